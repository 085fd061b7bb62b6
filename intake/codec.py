"""
CSV codec for per-user audit logs.

A log is a header row followed by one record per row. Readers locate
columns by header name, so later schema versions can append columns
after `actor` without breaking old readers or old data.
"""

import csv
import io
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from intake.exceptions import LogFormatError
from intake.records import EventRecord, to_utc

logger = logging.getLogger(__name__)

LOG_COLUMNS = (
    "event_id",
    "event_type",
    "timestamp",
    "principal",
    "subject_name",
    "storage_key",
    "size_bytes",
    "content_type",
    "origin_address",
    "client_descriptor",
    "session_token",
    "actor",
)

# A row missing any of these cannot be placed in a log or ordered.
CORE_COLUMNS = ("event_id", "event_type", "timestamp", "principal")


# ============================================================================
# Encoding
# ============================================================================

def encode_records(records: Iterable[EventRecord], include_header: bool = False) -> str:
    """
    Encode records as CSV text, one line per record.

    Args:
        records: Records to encode, in log order
        include_header: Prefix the output with the column header row

    Returns:
        CSV text ending in a newline (empty if there is nothing to write)
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    if include_header:
        writer.writerow(LOG_COLUMNS)

    for record in records:
        writer.writerow(_record_to_row(record))

    return buffer.getvalue()


def _record_to_row(record: EventRecord) -> List[str]:
    return [
        record.event_id,
        record.event_type,
        format_timestamp(record.timestamp),
        record.principal,
        record.subject_name,
        record.storage_key,
        "" if record.size_bytes is None else str(record.size_bytes),
        _optional_text(record.content_type),
        _optional_text(record.origin_address),
        _optional_text(record.client_descriptor),
        _optional_text(record.session_token),
        record.actor,
    ]


def _optional_text(value: Optional[str]) -> str:
    return "" if value is None else value


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC, e.g. 2024-11-09T14:30:00.123456+00:00."""
    return to_utc(value).isoformat()


# ============================================================================
# Decoding
# ============================================================================

def decode_records(text: str, source: str = "<log>") -> List[EventRecord]:
    """
    Decode CSV log text into records, preserving file order.

    Records are split on physical lines. A quoted field may carry a line
    break, but a quote left open never swallows the lines after it: the
    line that opened it is skipped and decoding resumes on the next line.
    Rows the csv module rejects, rows with a missing core value and rows
    with an unreadable timestamp are skipped with a warning, so one bad
    line never hides the rest of the log.

    Args:
        text: Full log contents, header first
        source: Name used in log messages (usually the log path)

    Returns:
        Decoded records in file order

    Raises:
        LogFormatError: If the header row is unreadable or lacks a core column
    """
    lines = text.split("\n")

    start = _first_non_blank(lines, 0)
    if start is None:
        return []

    header_row = _parse_row(lines[start])
    if header_row is None:
        raise LogFormatError(f"{source}: header row cannot be parsed")
    header = {name.strip(): index for index, name in enumerate(header_row)}

    missing = [name for name in CORE_COLUMNS if name not in header]
    if missing:
        raise LogFormatError(f"{source}: header is missing columns {', '.join(missing)}")

    widths = {len(header_row), len(LOG_COLUMNS)}
    records = []
    index = start + 1

    while index < len(lines):
        if not lines[index].strip():
            index += 1
            continue

        line_num = index + 1
        end = index
        chunk = lines[index]
        while _open_quote(chunk) and end + 1 < len(lines) and not _starts_record(lines[end + 1], header):
            end += 1
            chunk = f"{chunk}\n{lines[end]}"

        if _open_quote(chunk):
            logger.warning(f"Skipping audit row: source={source}, line={line_num}, unterminated quote")
            index += 1
            continue

        row = _parse_row(chunk)
        if row is None:
            logger.warning(f"Skipping audit row: source={source}, line={line_num}, unparsable CSV")
            index = end + 1
            continue

        if end > index and len(row) not in widths:
            logger.warning(
                f"Skipping audit row: source={source}, line={line_num}, "
                f"{len(row)} columns across {end - index + 1} lines"
            )
            index += 1
            continue

        index = end + 1
        if not any(cell.strip() for cell in row):
            continue
        record = _row_to_record(row, header, source, line_num)
        if record is not None:
            records.append(record)

    return records


def _first_non_blank(lines: List[str], start: int) -> Optional[int]:
    for index in range(start, len(lines)):
        if lines[index].strip():
            return index
    return None


def _open_quote(chunk: str) -> bool:
    # Escaped quotes come in pairs, so an odd count means a field is still open
    return chunk.count('"') % 2 == 1


def _parse_row(chunk: str) -> Optional[List[str]]:
    """One CSV row, or None when the csv module rejects it (e.g. an oversized field)."""
    try:
        rows = list(csv.reader(io.StringIO(chunk)))
    except csv.Error:
        return None
    if len(rows) != 1:
        return None
    return rows[0]


def _cell(row: List[str], header: Dict[str, int], name: str) -> Optional[str]:
    index = header.get(name)
    if index is None or index >= len(row) or row[index] == "":
        return None
    return row[index]


def _starts_record(line: str, header: Dict[str, int]) -> bool:
    """True if a physical line reads as a complete record on its own."""
    if _open_quote(line):
        return False
    row = _parse_row(line)
    if row is None:
        return False
    if any(_cell(row, header, name) is None for name in CORE_COLUMNS):
        return False
    return parse_timestamp(_cell(row, header, "timestamp")) is not None


def _row_to_record(
    row: List[str],
    header: Dict[str, int],
    source: str,
    line_num: int
) -> Optional[EventRecord]:
    def column(name: str) -> Optional[str]:
        return _cell(row, header, name)

    core = {name: column(name) for name in CORE_COLUMNS}
    absent = [name for name, value in core.items() if value is None]
    if absent:
        logger.warning(f"Skipping audit row: source={source}, line={line_num}, missing={absent}")
        return None

    timestamp = parse_timestamp(core["timestamp"])
    if timestamp is None:
        logger.warning(
            f"Skipping audit row: source={source}, line={line_num}, "
            f"bad timestamp={core['timestamp']!r}"
        )
        return None

    size_text = column("size_bytes")
    size_bytes = parse_optional_int(size_text)
    if size_text is not None and size_bytes is None:
        logger.warning(
            f"Ignoring unreadable size_bytes: source={source}, line={line_num}, value={size_text!r}"
        )

    return EventRecord(
        event_id=core["event_id"],
        event_type=core["event_type"],
        timestamp=timestamp,
        principal=core["principal"],
        subject_name=column("subject_name") or "",
        storage_key=column("storage_key") or "",
        size_bytes=size_bytes,
        content_type=column("content_type"),
        origin_address=column("origin_address"),
        client_descriptor=column("client_descriptor"),
        session_token=column("session_token"),
        actor=column("actor") or "",
    )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; None when absent or unreadable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_optional_int(value: Optional[str]) -> Optional[int]:
    """Parse an integer column; None when absent or unreadable."""
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None
