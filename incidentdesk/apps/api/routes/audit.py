from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.apps.api.deps import get_db, require_access
from incidentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from incidentdesk.apps.api.response import success_response
from incidentdesk.core.errors import NotFoundError
from incidentdesk.persistence.repos import audit as audit_repo
from incidentdesk.services.audit import (
    generate_audit_report,
    resource_history,
    serialize_event,
    user_activity,
)
from incidentdesk.services.authz import ACTION_AUDIT_READ
from incidentdesk.services.tenant import TenantContext


router = APIRouter(prefix="/orgs/{org_id}/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)

_audit_reader = require_access(ACTION_AUDIT_READ)


@router.get("/events")
async def list_audit_events(
    request: Request,
    resource_type: str | None = None,
    resource_id: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    context: TenantContext = Depends(_audit_reader),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Fetch one extra row to know whether another page exists.
    events = await audit_repo.list_events(
        db,
        org_id=context.org.id,
        resource_type=resource_type,
        resource_id=resource_id,
        user_id=user_id,
        action=action,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        offset=offset,
        limit=limit + 1,
    )
    next_offset = None
    if len(events) > limit:
        events = events[:limit]
        next_offset = offset + limit
    data = {"items": [serialize_event(event) for event in events], "next_offset": next_offset}
    return success_response(request=request, data=data)


@router.get("/events/{event_id}")
async def get_audit_event(
    request: Request,
    event_id: int,
    context: TenantContext = Depends(_audit_reader),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    event = await audit_repo.get_event_by_id(db, org_id=context.org.id, event_id=event_id)
    if event is None:
        raise NotFoundError("Audit event not found")
    return success_response(request=request, data=serialize_event(event))


@router.get("/report")
async def get_audit_report(
    request: Request,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    context: TenantContext = Depends(_audit_reader),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    report = await generate_audit_report(
        db,
        org_id=context.org.id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )
    return success_response(request=request, data=report)


@router.get("/resources/{resource_type}/{resource_id}")
async def get_resource_history(
    request: Request,
    resource_type: str,
    resource_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    context: TenantContext = Depends(_audit_reader),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    events = await resource_history(
        db,
        org_id=context.org.id,
        resource_type=resource_type,
        resource_id=resource_id,
        limit=limit,
    )
    return success_response(request=request, data={"items": [serialize_event(event) for event in events]})


@router.get("/users/{user_id}/activity")
async def get_user_activity(
    request: Request,
    user_id: str,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    limit: int = Query(default=100, ge=1, le=500),
    context: TenantContext = Depends(_audit_reader),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    events = await user_activity(
        db,
        org_id=context.org.id,
        user_id=user_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        limit=limit,
    )
    return success_response(request=request, data={"items": [serialize_event(event) for event in events]})
