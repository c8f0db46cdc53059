"""
Append-only auth audit trail (auth_audit_logs). Writes are best-effort:
a failing audit insert is logged and never blocks the request.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import Request

logger = logging.getLogger(__name__)

AuditStatus = Literal["success", "failed", "blocked"]


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or None
    return request.headers.get("x-real-ip")


async def log_auth_event(
    store,
    request: Request | None,
    *,
    action: str,
    status: AuditStatus,
    user_id: str | None = None,
    identifier: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    event = {
        "user_id": user_id,
        "identifier": identifier,
        "action": action,
        "status": status,
        "ip": get_client_ip(request) if request is not None else None,
        "user_agent": request.headers.get("user-agent") if request is not None else None,
        "metadata": metadata or {},
        "created_at": datetime.now(timezone.utc),
    }
    try:
        await store.insert_audit_event(event)
    except Exception as e:
        logger.warning("Audit write failed for action=%s status=%s: %s", action, status, e)
