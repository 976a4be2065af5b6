from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.domain.incidents import SEVERITIES, STATUSES
from incidentdesk.domain.models import Incident
from incidentdesk.persistence.repos import incidents as incidents_repo


RECENT_ACTIVITY_LIMIT = 10


def average_resolution_hours(durations: list[tuple[Any, Any]]) -> int | None:
    # Whole hours, rounded; None when nothing has been resolved yet.
    if not durations:
        return None
    total_seconds = sum((resolved - created).total_seconds() for created, resolved in durations)
    return round(total_seconds / len(durations) / 3600)


async def dashboard_stats(session: AsyncSession, org_id: str) -> dict[str, Any]:
    by_status = await incidents_repo.count_by(session, org_id, Incident.status)
    by_severity = await incidents_repo.count_by(session, org_id, Incident.severity)
    recent = await incidents_repo.recent_incidents(session, org_id, limit=RECENT_ACTIVITY_LIMIT)
    durations = await incidents_repo.resolved_durations(session, org_id)
    return {
        "incidents": {
            "total": sum(by_status.values()),
            "by_status": {status: by_status.get(status, 0) for status in STATUSES},
            "by_severity": {severity: by_severity.get(severity, 0) for severity in SEVERITIES},
        },
        "recent_activity": [
            {
                "id": row.id,
                "title": row.title,
                "status": row.status,
                "severity": row.severity,
                "updated_at": row.updated_at.isoformat() if row.updated_at else None,
            }
            for row in recent
        ],
        "avg_resolution_time_hours": average_resolution_hours(durations),
    }
