"""
Audit event records and the value types that travel with them.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


OPTIONAL_TEXT_FIELDS = ("content_type", "origin_address", "client_descriptor", "session_token")


class EventType(str, Enum):
    """Known audit event tags. Logs may contain others."""

    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"


@dataclass(frozen=True)
class RequestContext:
    """Where an action came from, as seen by the HTTP layer."""

    origin_address: Optional[str] = None
    client_descriptor: Optional[str] = None
    session_token: Optional[str] = None


@dataclass(frozen=True)
class EventRecord:
    """
    One immutable audit fact.

    `principal` owns the record (it decides which log the record lives in),
    `actor` performed the action. They differ when an administrator
    downloads another user's file.

    Timestamps are normalized to UTC on construction; naive values are
    taken to be UTC already.
    """

    event_id: str
    event_type: str
    timestamp: datetime
    principal: str
    subject_name: str = ""
    storage_key: str = ""
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    origin_address: Optional[str] = None
    client_descriptor: Optional[str] = None
    session_token: Optional[str] = None
    actor: str = ""

    def __post_init__(self):
        if not self.event_id:
            raise ValueError("event_id must not be empty")
        if not self.principal:
            raise ValueError("principal must not be empty")
        if isinstance(self.event_type, EventType):
            object.__setattr__(self, "event_type", self.event_type.value)
        object.__setattr__(self, "timestamp", to_utc(self.timestamp))
        # An empty optional field is stored and read back as absent
        for name in OPTIONAL_TEXT_FIELDS:
            if getattr(self, name) == "":
                object.__setattr__(self, name, None)

    @classmethod
    def upload(
        cls,
        principal: str,
        subject_name: str,
        storage_key: str,
        size_bytes: int,
        content_type: Optional[str],
        context: RequestContext = RequestContext(),
        timestamp: Optional[datetime] = None,
    ) -> "EventRecord":
        """Build an UPLOAD record; the uploader is both principal and actor."""
        return cls(
            event_id=new_event_id(),
            event_type=EventType.UPLOAD.value,
            timestamp=timestamp or datetime.now(timezone.utc),
            principal=principal,
            subject_name=subject_name,
            storage_key=storage_key,
            size_bytes=size_bytes,
            content_type=content_type,
            origin_address=context.origin_address,
            client_descriptor=context.client_descriptor,
            session_token=context.session_token,
            actor=principal,
        )

    @classmethod
    def download(
        cls,
        owner: str,
        subject_name: str,
        storage_key: str,
        actor: str,
        context: RequestContext = RequestContext(),
        timestamp: Optional[datetime] = None,
    ) -> "EventRecord":
        """Build a DOWNLOAD record filed under the file owner's log."""
        return cls(
            event_id=new_event_id(),
            event_type=EventType.DOWNLOAD.value,
            timestamp=timestamp or datetime.now(timezone.utc),
            principal=owner,
            subject_name=subject_name,
            storage_key=storage_key,
            origin_address=context.origin_address,
            client_descriptor=context.client_descriptor,
            session_token=context.session_token,
            actor=actor,
        )


@dataclass(frozen=True)
class SearchFilters:
    """
    Optional search predicates, combined with AND.

    A predicate left as None matches everything. Date bounds are inclusive
    and compare against the event's calendar date in the search timezone.
    """

    subject_name_contains: Optional[str] = None
    principal_equals: Optional[str] = None
    date_on_or_after: Optional[date] = None
    date_on_or_before: Optional[date] = None
    event_type_equals: Optional[str] = None


def new_event_id() -> str:
    """Random event identifier."""
    return str(uuid.uuid4())


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
