from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.core.config import get_settings
from incidentdesk.persistence.repos import audit as audit_repo


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def prune_audit_events(
    session: AsyncSession,
    *,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> int:
    # Remove audit rows past retention; a non-positive window disables pruning.
    days = get_settings().audit_retention_days if retention_days is None else retention_days
    if days <= 0:
        return 0
    cutoff = (now or _utc_now()) - timedelta(days=days)
    deleted = await audit_repo.delete_events_before(session, cutoff=cutoff)
    await session.commit()
    logger.info("audit_events_pruned deleted=%s cutoff=%s", deleted, cutoff.isoformat())
    return deleted
