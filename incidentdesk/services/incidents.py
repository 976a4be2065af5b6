from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import math
from typing import Any, Iterable

from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.core.errors import ConflictError, NotFoundError
from incidentdesk.domain.incidents import (
    RESOLVED_STATUS,
    IncidentChanges,
    IncidentSnapshot,
    UpdateResult,
    append_note,
    apply_changes,
    build_incident,
)
from incidentdesk.persistence.repos import incidents as incidents_repo
from incidentdesk.persistence.repos import users as user_repo
from incidentdesk.services.audit import ACTION_CREATE, ACTION_UPDATE, RESOURCE_INCIDENT, record_event
from incidentdesk.services.billing.plans import LIMIT_INCIDENTS, ensure_capacity
from incidentdesk.services.notifications.events import (
    ACTION_CREATED,
    ACTION_ESCALATED,
    ACTION_RESOLVED,
    ACTION_UPDATED,
    IncidentNotification,
    NotificationActor,
)
from incidentdesk.services.tenant import TenantContext


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


@dataclass(frozen=True)
class IncidentPage:
    items: list[IncidentSnapshot]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _actor(context: TenantContext) -> NotificationActor:
    return NotificationActor(name=context.user.name, email=context.user.email)


async def _assignee_emails(session: AsyncSession, org_id: str, assignees: Iterable[str]) -> tuple[str, ...]:
    # Assignees are user ids; unknown or foreign ids simply receive nothing.
    users = await user_repo.list_users_by_ids(session, org_id, list(assignees))
    return tuple(user.email for user in users if user.is_active)


async def _notify(dispatcher: Any, notification: IncidentNotification) -> None:
    if dispatcher is None:
        return
    try:
        await dispatcher.notify(notification)
    except Exception as exc:  # noqa: BLE001 - notifications never change the committed outcome
        logger.warning(
            "incident_notification_failed incident_id=%s action=%s",
            notification.incident.id,
            notification.action,
            exc_info=exc,
        )


async def _dispatch(
    dispatcher: Any,
    notification: IncidentNotification,
    background_tasks: BackgroundTasks | None,
) -> None:
    # Routes hand in their BackgroundTasks so delivery runs after the response is sent.
    if dispatcher is None:
        return
    if background_tasks is not None:
        background_tasks.add_task(_notify, dispatcher, notification)
        return
    await _notify(dispatcher, notification)


async def _audit(
    context: TenantContext,
    *,
    action: str,
    incident_id: str,
    details: dict[str, Any],
    request_context: dict[str, str | None] | None,
) -> None:
    request_context = request_context or {}
    await record_event(
        org_id=context.org.id,
        user_id=context.user.id,
        action=action,
        resource_type=RESOURCE_INCIDENT,
        resource_id=incident_id,
        details=details,
        request_id=request_context.get("request_id"),
        ip_address=request_context.get("ip_address"),
        user_agent=request_context.get("user_agent"),
        best_effort=True,
    )


async def _commit_or_conflict(session: AsyncSession, incident_id: str) -> None:
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        logger.info("incident_write_conflict incident_id=%s", incident_id)
        raise ConflictError(
            "Incident was modified concurrently; reload and retry",
            details={"incident_id": incident_id},
        ) from exc


async def create_incident(
    session: AsyncSession,
    context: TenantContext,
    *,
    title: str | None,
    description: str | None = None,
    severity: str | None = None,
    assignees: Iterable[str] | None = None,
    tags: Iterable[str] | None = None,
    affected_services: Iterable[str] | None = None,
    dispatcher: Any = None,
    background_tasks: BackgroundTasks | None = None,
    request_context: dict[str, str | None] | None = None,
    now: datetime | None = None,
) -> IncidentSnapshot:
    """Validate, persist and announce a new incident.

    The incident row and its seed timeline entry commit together. Audit and
    notifications follow the commit and cannot fail the call.
    """
    snapshot = build_incident(
        org_id=context.org.id,
        reporter_id=context.user.id,
        title=title,
        description=description,
        severity=severity,
        assignees=assignees,
        tags=tags,
        affected_services=affected_services,
        now=now or _utc_now(),
    )
    ensure_capacity(context.org.plan, LIMIT_INCIDENTS, await incidents_repo.count_incidents(session, context.org.id))

    try:
        await incidents_repo.insert_incident(session, snapshot)
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Incident already exists", details={"incident_id": snapshot.id}) from exc
    await _commit_or_conflict(session, snapshot.id)
    logger.info(
        "incident_created org_id=%s incident_id=%s severity=%s",
        snapshot.org_id,
        snapshot.id,
        snapshot.severity,
    )

    await _audit(
        context,
        action=ACTION_CREATE,
        incident_id=snapshot.id,
        details={"title": snapshot.title, "severity": snapshot.severity, "status": snapshot.status},
        request_context=request_context,
    )
    if dispatcher is not None:
        await _dispatch(
            dispatcher,
            IncidentNotification(
                incident=snapshot,
                action=ACTION_CREATED,
                actor=_actor(context),
                org_name=context.org.name,
                recipients=await _assignee_emails(session, snapshot.org_id, snapshot.assignees),
            ),
            background_tasks,
        )
    return snapshot


async def get_incident(session: AsyncSession, org_id: str, incident_id: str) -> IncidentSnapshot:
    snapshot = await incidents_repo.get_snapshot(session, org_id, incident_id)
    if snapshot is None:
        raise NotFoundError("Incident not found", details={"incident_id": incident_id})
    return snapshot


async def list_incidents(
    session: AsyncSession,
    org_id: str,
    *,
    status: str | None = None,
    severity: str | None = None,
    assignee: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> IncidentPage:
    # Clamp paging inputs instead of rejecting them.
    page = max(1, int(page))
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    rows, total = await incidents_repo.list_incidents(
        session,
        org_id,
        status=status,
        severity=severity,
        assignee=assignee,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [incidents_repo.to_snapshot(row, ()) for row in rows]
    return IncidentPage(items=items, page=page, limit=limit, total=total)


async def _load_for_update(
    session: AsyncSession, org_id: str, incident_id: str
) -> tuple[Any, IncidentSnapshot]:
    row = await incidents_repo.get_incident_row(session, org_id, incident_id)
    if row is None:
        raise NotFoundError("Incident not found", details={"incident_id": incident_id})
    timeline = await incidents_repo.list_timeline(session, row.id)
    return row, incidents_repo.to_snapshot(row, timeline)


def _update_notifications(result: UpdateResult, context: TenantContext) -> list[IncidentNotification]:
    # Status and severity changes are announced; other edits stay quiet.
    notifications: list[IncidentNotification] = []
    if "status" in result.changes:
        action = ACTION_RESOLVED if result.incident.status == RESOLVED_STATUS else ACTION_UPDATED
        notifications.append(
            IncidentNotification(
                incident=result.incident, action=action, actor=_actor(context), org_name=context.org.name
            )
        )
    if "severity" in result.changes:
        notifications.append(
            IncidentNotification(
                incident=result.incident,
                action=ACTION_ESCALATED,
                actor=_actor(context),
                org_name=context.org.name,
            )
        )
    return notifications


async def apply_incident_update(
    session: AsyncSession,
    context: TenantContext,
    incident_id: str,
    changes: IncidentChanges,
    *,
    dispatcher: Any = None,
    background_tasks: BackgroundTasks | None = None,
    request_context: dict[str, str | None] | None = None,
    now: datetime | None = None,
) -> UpdateResult:
    """Apply a partial update to one incident of the caller's organization.

    Field writes and the new timeline rows commit in one transaction. A
    request that changes nothing performs no write, no audit and no
    notification.
    """
    row, before = await _load_for_update(session, context.org.id, incident_id)
    result = apply_changes(before, changes, acting_user_id=context.user.id, now=now or _utc_now())
    if not result.changed:
        return result

    await incidents_repo.save_update(
        session, row, result.incident, result.entries, start_position=len(before.timeline)
    )
    await _commit_or_conflict(session, incident_id)
    logger.info(
        "incident_updated org_id=%s incident_id=%s fields=%s",
        context.org.id,
        incident_id,
        ",".join(sorted(result.changes)),
    )

    await _audit(
        context,
        action=ACTION_UPDATE,
        incident_id=incident_id,
        details={"changes": result.changes},
        request_context=request_context,
    )
    for notification in _update_notifications(result, context):
        await _dispatch(dispatcher, notification, background_tasks)
    return result


async def add_timeline_note(
    session: AsyncSession,
    context: TenantContext,
    incident_id: str,
    *,
    text: str | None,
    request_context: dict[str, str | None] | None = None,
    now: datetime | None = None,
) -> UpdateResult:
    row, before = await _load_for_update(session, context.org.id, incident_id)
    result = append_note(before, text=text, acting_user_id=context.user.id, now=now or _utc_now())
    await incidents_repo.save_update(
        session, row, result.incident, result.entries, start_position=len(before.timeline)
    )
    await _commit_or_conflict(session, incident_id)
    await _audit(
        context,
        action=ACTION_UPDATE,
        incident_id=incident_id,
        details={"note_added": True},
        request_context=request_context,
    )
    return result
