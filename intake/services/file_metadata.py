"""
Upload naming and validation.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Sequence

from intake.exceptions import FileSizeExceededError, InvalidFileTypeError

STORAGE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"


@dataclass(frozen=True)
class FileMetadata:
    """What the audit log needs to know about a stored upload."""

    original_filename: str
    stored_filename: str
    size: int
    content_type: Optional[str]


def sanitize_filename(filename: Optional[str]) -> str:
    """
    Make a filename safe to use as a single storage path segment.

    Path separators and dots become underscores, as does anything outside
    [A-Za-z0-9._-]. A name that would start with an underscore gets a
    "file" prefix.
    """
    if filename is None or not filename.strip():
        return "unnamed_file"

    sanitized = re.sub(r"[./\\]", "_", filename)
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", sanitized)

    if sanitized.startswith("_"):
        sanitized = "file" + sanitized

    return sanitized


def generate_storage_filename(original_filename: Optional[str], now: Optional[datetime] = None) -> str:
    """
    Timestamp-prefixed storage name.

    Example: 2024-11-09T14-30-00_report_pdf
    """
    moment = now or datetime.now(timezone.utc)
    return f"{moment.strftime(STORAGE_TIMESTAMP_FORMAT)}_{sanitize_filename(original_filename)}"


def validate_file_size(size: int, max_size: int) -> None:
    """Raise FileSizeExceededError if size is over max_size."""
    if size > max_size:
        max_mb = max_size // (1024 * 1024)
        raise FileSizeExceededError(f"File exceeds maximum size of {max_mb} MB")


def validate_content_type(content_type: Optional[str], allowed: Sequence[str]) -> None:
    """
    Check a MIME type against an allow-list of prefixes.

    An empty allow-list accepts every type, but the type itself must
    always be known.
    """
    if content_type is None or not content_type.strip():
        raise InvalidFileTypeError("File type could not be determined")

    if not allowed:
        return

    lowered = content_type.lower()
    if not any(lowered.startswith(prefix.lower()) for prefix in allowed):
        raise InvalidFileTypeError(
            f"File type '{content_type}' is not allowed. Supported types: {', '.join(allowed)}"
        )


def measure(source: BinaryIO) -> int:
    """Size of a seekable file object; the position is rewound to the start."""
    source.seek(0, 2)
    size = source.tell()
    source.seek(0)
    return size
