"""Audit logging for sign-in and ownership changes."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request

from deseo.core.logger import request_id_var


logger = logging.getLogger("deseo.audit")

_SENSITIVE_KEYS = ("token", "owner_token", "share_token", "passphrase", "secret", "authorization")


class AuditAction(str, Enum):
    """Audit action types."""
    # Authentication
    MAGIC_LINK_REQUEST = "magic_link_request"
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"

    # Ownership
    WISHLIST_CREATE = "wishlist_create"
    WISHLIST_CLAIM = "wishlist_claim"
    WISHLIST_ARCHIVE = "wishlist_archive"
    WISHLIST_DELETE = "wishlist_delete"
    ANONYMOUS_MIGRATION = "anonymous_migration"

    SHORT_LINK_UPDATE = "short_link_update"


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """
    Log an audit event.

    Args:
        action: The action being performed
        request: FastAPI request object (for IP, user agent)
        user_id: Email of the signed-in user, if any
        details: Additional details about the action
        success: Whether the action was successful
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }

    if user_id is not None:
        event["user_id"] = str(user_id)

    if request:
        client_host = request.client.host if request.client else None
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_host = forwarded.split(",")[0].strip()

        event["ip"] = client_host
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
        event["request_id"] = request_id_var.get()

    if details:
        event["details"] = {
            key: "***REDACTED***" if key in _SENSITIVE_KEYS else value
            for key, value in details.items()
        }

    if success:
        logger.info("AUDIT: %s", event)
    else:
        logger.warning("AUDIT: %s", event)


def audit_wishlist_action(
    action: AuditAction,
    request: Request,
    user_id: str | None,
    wishlist_id: str,
    details: dict[str, Any] | None = None,
) -> None:
    """Log wishlist ownership operation."""
    event_details: dict[str, Any] = {"wishlist_id": wishlist_id, "anonymous": user_id is None}
    if details:
        event_details.update(details)
    audit_log(action, request=request, user_id=user_id, details=event_details)
