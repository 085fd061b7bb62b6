"""
Per-user audit log engine.

Each user (principal) owns one append-only CSV log at
`<audit root>/<principal>.csv`. Writes for one principal are serialized by
a per-principal lock; writes for different principals never wait on each
other. Decoded logs are cached until the next write for that principal.
"""

import asyncio
import logging
import re
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from prometheus_client import Counter

from intake.codec import decode_records, encode_records
from intake.config import settings
from intake.exceptions import InvalidPrincipalError
from intake.records import EventRecord, RequestContext, SearchFilters
from intake.services.file_metadata import FileMetadata
from intake.services.search import SearchEngine, resolve_timezone
from intake.storage import LogStore, storage

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".csv"
PRINCIPAL_PATTERN = re.compile(r"^[A-Za-z0-9_@.+-]+$")

# Prometheus metrics
audit_events_recorded = Counter(
    'intake_audit_events_recorded_total',
    'Audit events persisted',
    ['event_type']
)
audit_write_failures = Counter(
    'intake_audit_write_failures_total',
    'Audit events that failed to persist',
    ['event_type']
)


def is_valid_principal(principal: str) -> bool:
    return bool(principal) and principal not in (".", "..") and PRINCIPAL_PATTERN.match(principal) is not None


def validate_principal(principal: str) -> str:
    """Ensure a principal maps to exactly one file directly under the audit root."""
    if not is_valid_principal(principal):
        raise InvalidPrincipalError(f"Invalid principal identifier: {principal!r}")
    return principal


# ============================================================================
# Principal Directory
# ============================================================================

class PrincipalDirectory:
    """Maps principals to log paths and discovers them from the store."""

    def __init__(self, store: LogStore, root: Union[str, Path]):
        self.store = store
        self.root = Path(root).as_posix()

    def path_for(self, principal: str) -> str:
        """Log path for a principal."""
        return f"{self.root}/{validate_principal(principal)}{LOG_SUFFIX}"

    def principal_from_path(self, path: str) -> Optional[str]:
        """Recover the principal from a log path, or None for unrelated files."""
        candidate = PurePosixPath(path)
        if candidate.parent != PurePosixPath(self.root):
            return None
        if not candidate.name.endswith(LOG_SUFFIX):
            return None
        principal = candidate.name[:-len(LOG_SUFFIX)]
        return principal if is_valid_principal(principal) else None

    async def list_principals(self) -> Set[str]:
        """Every principal that has a log under the root."""
        principals = set()
        for path in await self.store.list(self.root):
            principal = self.principal_from_path(path)
            if principal is None:
                logger.debug(f"Ignoring non-log file under audit root: {path}")
                continue
            principals.add(principal)
        return principals


# ============================================================================
# Read Cache
# ============================================================================

class ReadCache:
    """
    Decoded events per principal, valid until the next write.

    A principal with no log is never cached. Each invalidation bumps a
    per-principal generation; a load that overlapped an invalidation is
    handed back to its caller but not kept.
    """

    def __init__(self, loader: Callable[[str], Awaitable[Optional[List[EventRecord]]]]):
        self._loader = loader
        self._entries: Dict[str, Tuple[EventRecord, ...]] = {}
        self._generations: Dict[str, int] = {}

    async def get(self, principal: str) -> Tuple[EventRecord, ...]:
        """Events for a principal in log order."""
        cached = self._entries.get(principal)
        if cached is not None:
            return cached

        generation = self._generations.get(principal, 0)
        loaded = await self._loader(principal)
        if loaded is None:
            return ()

        events = tuple(loaded)
        if self._generations.get(principal, 0) != generation:
            return events
        return self._entries.setdefault(principal, events)

    def invalidate(self, principal: str) -> None:
        """Drop a principal's cached events."""
        self._generations[principal] = self._generations.get(principal, 0) + 1
        self._entries.pop(principal, None)

    def is_cached(self, principal: str) -> bool:
        return principal in self._entries


# ============================================================================
# Write Coordinator
# ============================================================================

class WriteCoordinator:
    """Serializes appends per principal."""

    def __init__(self, store: LogStore, cache: ReadCache, path_for: Callable[[str], str]):
        self.store = store
        self.cache = cache
        self.path_for = path_for
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, principal: str) -> asyncio.Lock:
        lock = self._locks.get(principal)
        if lock is None:
            lock = self._locks.setdefault(principal, asyncio.Lock())
        return lock

    async def append(self, record: EventRecord) -> None:
        """
        Append one record to its principal's log.

        A new log is created with the header row in the same write. Backend
        failures propagate unchanged.
        """
        principal = record.principal
        path = self.path_for(principal)

        async with self.lock_for(principal):
            try:
                if await self.store.exists(path):
                    await self.store.append(path, encode_records([record]))
                else:
                    await self.store.write_all(path, encode_records([record], include_header=True))
            finally:
                # The object may have changed even if the write failed
                self.cache.invalidate(principal)


# ============================================================================
# Audit Log Service
# ============================================================================

class AuditLog:
    """Records uploads and downloads and answers audit searches."""

    def __init__(self, store: LogStore, root: Union[str, Path], search_timezone=None):
        self.store = store
        self.directory = PrincipalDirectory(store, root)
        self.cache = ReadCache(self._load_log)
        self.writer = WriteCoordinator(store, self.cache, self.directory.path_for)
        self.search_engine = SearchEngine(self.directory, self.cache, tz=search_timezone)

    async def append(self, record: EventRecord) -> EventRecord:
        """Persist a record in its principal's log."""
        await self.writer.append(record)
        return record

    async def record_upload(
        self,
        principal: str,
        metadata: FileMetadata,
        context: RequestContext = RequestContext()
    ) -> EventRecord:
        """Record a completed upload under the uploader's log."""
        record = EventRecord.upload(
            principal=principal,
            subject_name=metadata.original_filename,
            storage_key=metadata.stored_filename,
            size_bytes=metadata.size,
            content_type=metadata.content_type,
            context=context,
        )
        await self._record(record, "upload")
        logger.info(f"Recorded upload: user={principal}, file={metadata.original_filename}")
        return record

    async def record_download(
        self,
        owner: str,
        subject_name: str,
        storage_key: str,
        actor: str,
        context: RequestContext = RequestContext()
    ) -> EventRecord:
        """Record a completed download under the file owner's log."""
        record = EventRecord.download(
            owner=owner,
            subject_name=subject_name,
            storage_key=storage_key,
            actor=actor,
            context=context,
        )
        await self._record(record, "download")
        logger.info(f"Recorded download: owner={owner}, downloader={actor}, file={subject_name}")
        return record

    async def _record(self, record: EventRecord, operation: str) -> None:
        try:
            await self.writer.append(record)
        except Exception as e:
            audit_write_failures.labels(event_type=record.event_type).inc()
            logger.error(
                f"Failed to record audit event: operation={operation}, "
                f"user={record.principal}, actor={record.actor}, "
                f"timestamp={record.timestamp.isoformat()}, error={e}"
            )
            raise
        audit_events_recorded.labels(event_type=record.event_type).inc()

    async def events_for(self, principal: str) -> Sequence[EventRecord]:
        """A principal's events in log order (empty if it has no log)."""
        return await self.cache.get(principal)

    async def list_principals(self) -> Set[str]:
        return await self.directory.list_principals()

    async def search(self, filters: Optional[SearchFilters] = None) -> List[EventRecord]:
        """Events from every log matching the filters, newest first."""
        return await self.search_engine.search(filters)

    async def original_filename(self, principal: str, storage_key: str) -> str:
        """
        Name a stored file had when it was uploaded.

        Falls back to the storage key when no record mentions it.
        """
        for event in await self.events_for(principal):
            if event.storage_key == storage_key:
                return event.subject_name or storage_key
        return storage_key

    async def _load_log(self, principal: str) -> Optional[List[EventRecord]]:
        path = self.directory.path_for(principal)
        if not await self.store.exists(path):
            logger.debug(f"No audit file for user: {principal}")
            return None

        text = await self.store.read_all(path)
        events = decode_records(text, source=path)
        logger.debug(f"Loaded {len(events)} audit events for user: {principal}")
        return events


# Global audit log instance
audit_log = AuditLog(
    storage,
    settings.audit_index_path,
    search_timezone=resolve_timezone(settings.search_timezone)
)


async def get_audit_log() -> AuditLog:
    """FastAPI dependency for the audit log service."""
    return audit_log
