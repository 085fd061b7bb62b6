"""
Pydantic models for request/response validation.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from intake.records import EventRecord, SearchFilters


# ============================================================================
# Audit Event Models
# ============================================================================

class AuditEventOut(BaseModel):
    """Audit event as returned by the API."""

    event_id: str
    event_type: str = Field(..., examples=["UPLOAD", "DOWNLOAD"])
    timestamp: datetime
    principal: str = Field(..., description="Owner of the file the event concerns")
    subject_name: str = Field(..., description="Original filename")
    storage_key: str = Field(..., description="Name the file is stored under")
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    origin_address: Optional[str] = None
    client_descriptor: Optional[str] = None
    session_token: Optional[str] = None
    actor: str = Field(..., description="Who performed the action")

    @classmethod
    def from_record(cls, record: EventRecord) -> "AuditEventOut":
        return cls(
            event_id=record.event_id,
            event_type=record.event_type,
            timestamp=record.timestamp,
            principal=record.principal,
            subject_name=record.subject_name,
            storage_key=record.storage_key,
            size_bytes=record.size_bytes,
            content_type=record.content_type,
            origin_address=record.origin_address,
            client_descriptor=record.client_descriptor,
            session_token=record.session_token,
            actor=record.actor,
        )


class SearchCriteria(BaseModel):
    """Echo of the filters applied to a search."""

    filename: Optional[str] = None
    username: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    event_type: Optional[str] = None

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            subject_name_contains=self.filename,
            principal_equals=self.username,
            date_on_or_after=self.start_date,
            date_on_or_before=self.end_date,
            event_type_equals=self.event_type,
        )


class FileListingPage(BaseModel):
    """One page of uploaded files."""

    files: List[AuditEventOut]
    total_results: int
    total_pages: int
    current_page: int
    criteria: SearchCriteria


class AuditSearchResponse(BaseModel):
    """Audit search results."""

    total: int
    limit: int
    offset: int
    events: List[AuditEventOut]
    criteria: SearchCriteria


class PrincipalList(BaseModel):
    """Users that have an audit log."""

    count: int
    principals: List[str]


# ============================================================================
# Upload Models
# ============================================================================

class UploadResponse(BaseModel):
    """Response model for the upload endpoint."""

    status: str = Field(..., examples=["success", "error"])
    message: str
    stored_as: Optional[str] = None


# ============================================================================
# Health Check Models
# ============================================================================

class HealthStatus(BaseModel):
    """Health check response."""

    status: str = Field(..., examples=["healthy", "unhealthy"])
    version: str
    storage: str = Field(..., examples=["writable", "unavailable"])
    uptime_seconds: float
    timestamp: datetime
