from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.domain.models import AuditLogEntry
from incidentdesk.persistence.guards import org_predicate


def _scoped(
    org_id: str,
    *,
    resource_type: str | None = None,
    resource_id: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
):
    # Scope all audit queries to an org to prevent cross-tenant leakage.
    stmt = select(AuditLogEntry).where(org_predicate(AuditLogEntry, org_id))
    if resource_type:
        stmt = stmt.where(AuditLogEntry.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditLogEntry.resource_id == resource_id)
    if user_id:
        stmt = stmt.where(AuditLogEntry.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLogEntry.action == action)
    if occurred_from:
        stmt = stmt.where(AuditLogEntry.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditLogEntry.occurred_at <= occurred_to)
    return stmt


async def list_events(
    session: AsyncSession,
    *,
    org_id: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditLogEntry]:
    stmt = _scoped(
        org_id,
        resource_type=resource_type,
        resource_id=resource_id,
        user_id=user_id,
        action=action,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )
    stmt = stmt.order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
    result = await session.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all())


async def list_events_in_range(
    session: AsyncSession,
    *,
    org_id: str,
    occurred_from: datetime | None,
    occurred_to: datetime | None,
) -> list[AuditLogEntry]:
    # Unpaginated read used for report aggregation.
    stmt = _scoped(org_id, occurred_from=occurred_from, occurred_to=occurred_to)
    result = await session.execute(stmt.order_by(AuditLogEntry.occurred_at, AuditLogEntry.id))
    return list(result.scalars().all())


async def get_event_by_id(
    session: AsyncSession,
    *,
    org_id: str,
    event_id: int,
) -> AuditLogEntry | None:
    result = await session.execute(
        select(AuditLogEntry).where(AuditLogEntry.id == event_id, org_predicate(AuditLogEntry, org_id))
    )
    return result.scalar_one_or_none()


async def count_events(session: AsyncSession, *, org_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(AuditLogEntry).where(org_predicate(AuditLogEntry, org_id))
    )
    return int(result.scalar() or 0)


async def delete_events_before(session: AsyncSession, *, cutoff: datetime) -> int:
    # Retention spans every org; this is the only unscoped audit statement.
    result = await session.execute(delete(AuditLogEntry).where(AuditLogEntry.occurred_at < cutoff))
    return int(result.rowcount or 0)
