"""
Full-corpus audit search.

Every known user's log is loaded through the read cache, merged, filtered
and returned newest first. The scan is linear in the number of events,
which is fine for the hundreds of users and low millions of events this
service is sized for.
"""

import asyncio
import csv
import logging
from datetime import date, datetime, tzinfo
from typing import Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from prometheus_client import Counter

from intake.exceptions import StorageError
from intake.records import EventRecord, SearchFilters

logger = logging.getLogger(__name__)

audit_load_failures = Counter(
    'intake_audit_load_failures_total',
    'Audit logs that could not be loaded during a search'
)


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Map a configured IANA zone name to a tzinfo (None means host local time)."""
    return ZoneInfo(name) if name else None


def event_date(timestamp: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of an instant in the given zone (host local zone if None)."""
    return timestamp.astimezone(tz).date()


def matches(event: EventRecord, filters: SearchFilters, tz: Optional[tzinfo] = None) -> bool:
    """
    Check one event against every supplied filter.

    All predicates are evaluated; a filter left as None matches everything.
    """
    if filters.subject_name_contains is not None:
        if filters.subject_name_contains.casefold() not in event.subject_name.casefold():
            return False

    if filters.principal_equals is not None:
        if event.principal != filters.principal_equals:
            return False

    if filters.date_on_or_after is not None or filters.date_on_or_before is not None:
        day = event_date(event.timestamp, tz)
        if filters.date_on_or_after is not None and day < filters.date_on_or_after:
            return False
        if filters.date_on_or_before is not None and day > filters.date_on_or_before:
            return False

    if filters.event_type_equals is not None:
        if event.event_type != filters.event_type_equals:
            return False

    return True


def filter_and_sort(
    events: Iterable[EventRecord],
    filters: SearchFilters,
    tz: Optional[tzinfo] = None
) -> List[EventRecord]:
    """Apply filters and order newest first; equal timestamps keep input order."""
    hits = [event for event in events if matches(event, filters, tz)]
    hits.sort(key=lambda event: event.timestamp, reverse=True)
    return hits


class SearchEngine:
    """Search across all users' audit logs."""

    def __init__(self, directory, cache, tz: Optional[tzinfo] = None):
        self.directory = directory
        self.cache = cache
        self.tz = tz

    async def search(self, filters: Optional[SearchFilters] = None) -> List[EventRecord]:
        """
        Return every event matching the filters, newest first.

        A log that fails to load is reported and left out; it never fails
        the search as a whole.
        """
        filters = filters or SearchFilters()

        principals = sorted(await self.directory.list_principals())
        batches = await asyncio.gather(
            *(self._events_or_empty(principal) for principal in principals)
        )

        merged = [event for batch in batches for event in batch]
        results = filter_and_sort(merged, filters, self.tz)

        logger.debug(
            f"Audit search: principals={len(principals)}, scanned={len(merged)}, "
            f"matched={len(results)}"
        )
        return results

    async def _events_or_empty(self, principal: str) -> Sequence[EventRecord]:
        try:
            return await self.cache.get(principal)
        # LogFormatError and undecodable text are both ValueErrors
        except (StorageError, ValueError, csv.Error) as e:
            audit_load_failures.inc()
            logger.error(f"Failed to load audit log for user: {principal}: {e}")
            return ()
