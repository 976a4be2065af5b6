from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from incidentdesk.domain.models import AuditLogEntry
from incidentdesk.persistence.db import SessionLocal
from incidentdesk.persistence.repos import audit as audit_repo


logger = logging.getLogger(__name__)

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_INVITE = "invite"

RESOURCE_INCIDENT = "incident"
RESOURCE_USER = "user"
RESOURCE_SETTINGS = "settings"
RESOURCE_BILLING = "billing"

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "card"]
_REDACTED_VALUE = "[REDACTED]"
_TOP_N = 10


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub secret-like fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def client_ip(request: Request) -> str | None:
    # Proxies append hops to X-Forwarded-For; the first one is the original client.
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    return {
        "request_id": request_id,
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }


async def record_event(
    *,
    org_id: str,
    user_id: str,
    action: str,
    resource_type: str,
    resource_id: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    occurred_at: datetime | None = None,
    best_effort: bool = True,
) -> None:
    """Persist one audit row in a session of its own.

    The audited change is already committed by the caller, so the caller's
    session and the objects it holds stay untouched when this write fails.
    Failures are logged and only re-raised when ``best_effort`` is off.
    """
    entry = AuditLogEntry(
        org_id=org_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details_json=sanitize_metadata(details or {}),
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=request_id,
        occurred_at=occurred_at or datetime.now(timezone.utc),
    )

    async with SessionLocal() as audit_session:
        try:
            audit_session.add(entry)
            await audit_session.commit()
        except SQLAlchemyError as exc:
            await audit_session.rollback()
            _log_failure(action, request_id, exc, best_effort)
            if not best_effort:
                raise
            return
    logger.debug(
        "audit_event_recorded action=%s resource_type=%s resource_id=%s user_id=%s",
        action,
        resource_type,
        resource_id,
        user_id,
    )


def _log_failure(action: str, request_id: str | None, exc: Exception, best_effort: bool) -> None:
    level = logger.warning if best_effort else logger.error
    level(
        "audit_event_write_failed action=%s request_id=%s",
        action,
        request_id,
        exc_info=exc,
    )


async def resource_history(
    session: AsyncSession,
    *,
    org_id: str,
    resource_type: str,
    resource_id: str,
    limit: int = 50,
) -> list[AuditLogEntry]:
    return await audit_repo.list_events(
        session,
        org_id=org_id,
        resource_type=resource_type,
        resource_id=resource_id,
        limit=limit,
    )


async def user_activity(
    session: AsyncSession,
    *,
    org_id: str,
    user_id: str,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    limit: int = 100,
) -> list[AuditLogEntry]:
    return await audit_repo.list_events(
        session,
        org_id=org_id,
        user_id=user_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        limit=limit,
    )


def summarize_events(entries: list[AuditLogEntry]) -> dict[str, Any]:
    """Aggregate audit rows into the report shape.

    ``summary`` counts rows per resource type, ``top_users`` and ``top_actions``
    keep the ten most frequent values, and ``timeline`` holds one bucket per
    calendar day in ascending order.
    """
    by_resource: Counter[str] = Counter()
    by_user: Counter[str] = Counter()
    by_action: Counter[str] = Counter()
    by_day: Counter[str] = Counter()
    for entry in entries:
        by_resource[entry.resource_type] += 1
        by_user[entry.user_id] += 1
        by_action[entry.action] += 1
        by_day[entry.occurred_at.date().isoformat()] += 1
    return {
        "summary": dict(by_resource),
        "top_users": [{"user_id": user, "count": count} for user, count in by_user.most_common(_TOP_N)],
        "top_actions": [
            {"action": action, "count": count} for action, count in by_action.most_common(_TOP_N)
        ],
        "timeline": [{"date": day, "count": by_day[day]} for day in sorted(by_day)],
    }


async def generate_audit_report(
    session: AsyncSession,
    *,
    org_id: str,
    occurred_from: datetime | None,
    occurred_to: datetime | None,
) -> dict[str, Any]:
    entries = await audit_repo.list_events_in_range(
        session,
        org_id=org_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )
    return summarize_events(entries)


def serialize_event(entry: AuditLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "org_id": entry.org_id,
        "user_id": entry.user_id,
        "action": entry.action,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "details": entry.details_json or {},
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "request_id": entry.request_id,
        "occurred_at": entry.occurred_at.isoformat() if entry.occurred_at else None,
    }
