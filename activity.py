"""Append-only audit trail of user and admin actions."""
import logging
from typing import Any, Optional

from fastapi import Request

from database import create_document
from schemas import Activitylog

logger = logging.getLogger(__name__)


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def log_activity(user_id: str, action: str, resource: str, resource_id: Optional[str] = None, details: Any = None, request: Optional[Request] = None) -> str:
    entry = Activitylog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details if details is not None else {},
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )
    entry_id = create_document("activitylog", entry)
    logger.debug("activity %s %s/%s by %s", action, resource, resource_id, user_id)
    return entry_id
