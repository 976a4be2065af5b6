from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import String, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.domain.incidents import IncidentSnapshot, TimelineEntry
from incidentdesk.domain.models import Incident, IncidentTimelineEntry
from incidentdesk.persistence.guards import org_predicate


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes; everything stored is UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _labels(values: list[str] | None) -> tuple[str, ...] | None:
    return tuple(values) if values is not None else None


def to_entry(row: IncidentTimelineEntry) -> TimelineEntry:
    return TimelineEntry(
        entry_type=row.entry_type,
        text=row.text,
        user_id=row.user_id,
        occurred_at=_as_utc(row.occurred_at),
        old_value=row.old_value,
        new_value=row.new_value,
    )


def to_snapshot(row: Incident, timeline: Iterable[IncidentTimelineEntry]) -> IncidentSnapshot:
    return IncidentSnapshot(
        id=row.id,
        org_id=row.org_id,
        title=row.title,
        description=row.description,
        severity=row.severity,
        status=row.status,
        assignees=tuple(row.assignees_json or ()),
        reporter_id=row.reporter_id,
        timeline=tuple(to_entry(entry) for entry in timeline),
        tags=_labels(row.tags_json),
        affected_services=_labels(row.affected_services_json),
        resolved_at=_as_utc(row.resolved_at),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


async def get_incident_row(session: AsyncSession, org_id: str, incident_id: str) -> Incident | None:
    # Return None for tenant mismatch to keep 404 semantics.
    result = await session.execute(
        select(Incident).where(Incident.id == incident_id, org_predicate(Incident, org_id))
    )
    return result.scalar_one_or_none()


async def list_timeline(session: AsyncSession, incident_id: str) -> list[IncidentTimelineEntry]:
    result = await session.execute(
        select(IncidentTimelineEntry)
        .where(IncidentTimelineEntry.incident_id == incident_id)
        .order_by(IncidentTimelineEntry.position)
    )
    return list(result.scalars().all())


async def get_snapshot(session: AsyncSession, org_id: str, incident_id: str) -> IncidentSnapshot | None:
    row = await get_incident_row(session, org_id, incident_id)
    if row is None:
        return None
    return to_snapshot(row, await list_timeline(session, row.id))


def _add_entries(
    session: AsyncSession,
    *,
    incident_id: str,
    org_id: str,
    entries: Iterable[TimelineEntry],
    start_position: int,
) -> None:
    # Positions come from the snapshot length; a concurrent writer at the same
    # position trips the unique constraint instead of interleaving entries.
    for offset, entry in enumerate(entries):
        session.add(
            IncidentTimelineEntry(
                incident_id=incident_id,
                org_id=org_id,
                position=start_position + offset,
                entry_type=entry.entry_type,
                text=entry.text,
                user_id=entry.user_id,
                occurred_at=entry.occurred_at,
                old_value=entry.old_value,
                new_value=entry.new_value,
            )
        )


async def insert_incident(session: AsyncSession, snapshot: IncidentSnapshot) -> Incident:
    row = Incident(
        id=snapshot.id,
        org_id=snapshot.org_id,
        title=snapshot.title,
        description=snapshot.description,
        severity=snapshot.severity,
        status=snapshot.status,
        assignees_json=list(snapshot.assignees),
        reporter_id=snapshot.reporter_id,
        tags_json=list(snapshot.tags) if snapshot.tags is not None else None,
        affected_services_json=(
            list(snapshot.affected_services) if snapshot.affected_services is not None else None
        ),
        resolved_at=snapshot.resolved_at,
        created_at=snapshot.created_at,
        updated_at=snapshot.updated_at,
    )
    session.add(row)
    # Flush the parent first so timeline foreign keys resolve on every backend.
    await session.flush()
    _add_entries(
        session,
        incident_id=snapshot.id,
        org_id=snapshot.org_id,
        entries=snapshot.timeline,
        start_position=0,
    )
    return row


async def save_update(
    session: AsyncSession,
    row: Incident,
    snapshot: IncidentSnapshot,
    entries: Iterable[TimelineEntry],
    *,
    start_position: int,
) -> Incident:
    # Copy mutable fields from the snapshot; identity and reporter never change.
    row.title = snapshot.title
    row.description = snapshot.description
    row.severity = snapshot.severity
    row.status = snapshot.status
    row.assignees_json = list(snapshot.assignees)
    row.resolved_at = snapshot.resolved_at
    row.updated_at = snapshot.updated_at
    _add_entries(
        session,
        incident_id=row.id,
        org_id=row.org_id,
        entries=entries,
        start_position=start_position,
    )
    return row


def _escape_like(value: str) -> str:
    # Wildcards in user input must match literally.
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filtered(
    stmt,
    *,
    status: str | None,
    severity: str | None,
    assignee: str | None,
):
    if status:
        stmt = stmt.where(Incident.status == status)
    if severity:
        stmt = stmt.where(Incident.severity == severity)
    if assignee:
        # JSON list membership through its text form works on both Postgres and SQLite.
        pattern = f'%"{_escape_like(assignee)}"%'
        stmt = stmt.where(cast(Incident.assignees_json, String).like(pattern, escape="\\"))
    return stmt


async def list_incidents(
    session: AsyncSession,
    org_id: str,
    *,
    status: str | None = None,
    severity: str | None = None,
    assignee: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Incident], int]:
    # Newest first, with a stable id tiebreaker for deterministic pages.
    base = select(Incident).where(org_predicate(Incident, org_id))
    base = _filtered(base, status=status, severity=severity, assignee=assignee)
    total_stmt = select(func.count()).select_from(base.subquery())
    total = int((await session.execute(total_stmt)).scalar() or 0)
    result = await session.execute(
        base.order_by(Incident.created_at.desc(), Incident.id.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


async def count_incidents(session: AsyncSession, org_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Incident).where(org_predicate(Incident, org_id))
    )
    return int(result.scalar() or 0)


async def count_by(session: AsyncSession, org_id: str, column) -> dict[str, int]:
    result = await session.execute(
        select(column, func.count()).where(org_predicate(Incident, org_id)).group_by(column)
    )
    return {str(key): int(count) for key, count in result.all()}


async def recent_incidents(session: AsyncSession, org_id: str, *, limit: int = 10) -> list[Incident]:
    result = await session.execute(
        select(Incident)
        .where(org_predicate(Incident, org_id))
        .order_by(Incident.updated_at.desc(), Incident.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def resolved_durations(session: AsyncSession, org_id: str) -> list[tuple[datetime, datetime]]:
    # Durations are computed in Python since interval arithmetic differs per backend.
    result = await session.execute(
        select(Incident.created_at, Incident.resolved_at).where(
            org_predicate(Incident, org_id), Incident.resolved_at.is_not(None)
        )
    )
    return [(_as_utc(created), _as_utc(resolved)) for created, resolved in result.all()]
