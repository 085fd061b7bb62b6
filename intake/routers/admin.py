"""
Admin endpoints for audit log search.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from intake.auth import User, get_current_admin_user
from intake.models import AuditEventOut, AuditSearchResponse, PrincipalList, SearchCriteria
from intake.routers.dependencies import blank_to_none
from intake.services.audit_log import AuditLog, get_audit_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.get("/audit", response_model=AuditSearchResponse)
async def search_audit(
    filename: Optional[str] = None,
    username: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    event_type: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_admin_user),
    audit: AuditLog = Depends(get_audit_log)
):
    """
    Search every user's audit log.

    **Query Parameters (all optional, combined with AND):**
    - `filename`: case-insensitive substring of the original filename
    - `username`: exact file owner
    - `start_date` / `end_date`: inclusive calendar dates
    - `event_type`: exact tag, e.g. UPLOAD or DOWNLOAD

    Results are newest first.

    **Authentication:** admin Bearer token
    """
    criteria = SearchCriteria(
        filename=blank_to_none(filename),
        username=blank_to_none(username),
        start_date=start_date,
        end_date=end_date,
        event_type=blank_to_none(event_type),
    )

    events = await audit.search(criteria.to_filters())

    logger.info(f"Audit search by {current_user.username}: matched={len(events)}")

    return AuditSearchResponse(
        total=len(events),
        limit=limit,
        offset=offset,
        events=[AuditEventOut.from_record(event) for event in events[offset:offset + limit]],
        criteria=criteria
    )


@router.get("/audit/principals", response_model=PrincipalList)
async def list_principals(
    current_user: User = Depends(get_current_admin_user),
    audit: AuditLog = Depends(get_audit_log)
):
    """
    List users that have an audit log.

    **Authentication:** admin Bearer token
    """
    principals = sorted(await audit.list_principals())
    return PrincipalList(count=len(principals), principals=principals)
