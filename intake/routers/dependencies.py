"""Shared request helpers for routers."""

from typing import Optional

from fastapi import Depends, Request

from intake.auth import User, get_current_user
from intake.records import RequestContext


def client_address(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else None


async def get_request_context(
    request: Request,
    current_user: User = Depends(get_current_user)
) -> RequestContext:
    """Actor environment recorded with every audit event."""
    return RequestContext(
        origin_address=client_address(request),
        client_descriptor=request.headers.get("User-Agent"),
        session_token=current_user.session_id,
    )


def blank_to_none(value: Optional[str]) -> Optional[str]:
    """Treat empty query parameters as absent."""
    if value is None or not value.strip():
        return None
    return value.strip()
