from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.apps.api.deps import get_db, get_dispatcher, require_feature_access
from incidentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from incidentdesk.apps.api.response import SuccessEnvelope, success_response
from incidentdesk.domain.incidents import IncidentChanges, IncidentSnapshot, TimelineEntry
from incidentdesk.services.audit import get_request_context
from incidentdesk.services.authz import ACTION_INCIDENTS_READ, ACTION_INCIDENTS_WRITE
from incidentdesk.services.features import FEATURE_INCIDENT_MANAGEMENT
from incidentdesk.services.incidents import (
    DEFAULT_PAGE_SIZE,
    add_timeline_note,
    apply_incident_update,
    create_incident,
    get_incident,
    list_incidents,
)
from incidentdesk.services.notifications import NotificationDispatcher
from incidentdesk.services.tenant import TenantContext


router = APIRouter(prefix="/orgs/{org_id}/incidents", tags=["incidents"], responses=DEFAULT_ERROR_RESPONSES)

_read = require_feature_access(FEATURE_INCIDENT_MANAGEMENT, ACTION_INCIDENTS_READ)
_write = require_feature_access(FEATURE_INCIDENT_MANAGEMENT, ACTION_INCIDENTS_WRITE)


class TimelineEntryResponse(BaseModel):
    type: str
    text: str
    user_id: str
    occurred_at: datetime
    old_value: str | None = None
    new_value: str | None = None


class IncidentResponse(BaseModel):
    id: str
    org_id: str
    title: str
    description: str | None
    severity: str
    status: str
    assignees: list[str]
    reporter_id: str
    tags: list[str] | None
    affected_services: list[str] | None
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime
    timeline: list[TimelineEntryResponse] | None = None


class IncidentListResponse(BaseModel):
    items: list[IncidentResponse]
    page: int
    limit: int
    total: int
    pages: int


class IncidentUpdateResponse(BaseModel):
    incident: IncidentResponse
    changed: bool


class IncidentCreateRequest(BaseModel):
    # Title stays optional here so blank and missing titles share one domain error.
    title: str | None = None
    description: str | None = None
    severity: str | None = None
    assignees: list[str] | None = None
    tags: list[str] | None = None
    affected_services: list[str] | None = None

    model_config = {"extra": "forbid"}


class IncidentPatchRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    status: str | None = None
    severity: str | None = None
    assignees: list[str] | None = None

    model_config = {"extra": "forbid"}


class NoteRequest(BaseModel):
    text: str | None = Field(default=None)

    model_config = {"extra": "forbid"}


def _entry_response(entry: TimelineEntry) -> TimelineEntryResponse:
    return TimelineEntryResponse(
        type=entry.entry_type,
        text=entry.text,
        user_id=entry.user_id,
        occurred_at=entry.occurred_at,
        old_value=entry.old_value,
        new_value=entry.new_value,
    )


def _to_response(incident: IncidentSnapshot, *, include_timeline: bool = True) -> IncidentResponse:
    return IncidentResponse(
        id=incident.id,
        org_id=incident.org_id,
        title=incident.title,
        description=incident.description,
        severity=incident.severity,
        status=incident.status,
        assignees=list(incident.assignees),
        reporter_id=incident.reporter_id,
        tags=list(incident.tags) if incident.tags is not None else None,
        affected_services=list(incident.affected_services) if incident.affected_services is not None else None,
        resolved_at=incident.resolved_at,
        created_at=incident.created_at,
        updated_at=incident.updated_at,
        timeline=[_entry_response(entry) for entry in incident.timeline] if include_timeline else None,
    )


@router.get("", response_model=SuccessEnvelope[IncidentListResponse])
async def list_incidents_route(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    severity: str | None = Query(default=None),
    assignee: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1),
    context: TenantContext = Depends(_read),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await list_incidents(
        db,
        context.org.id,
        status=status_filter,
        severity=severity,
        assignee=assignee,
        page=page,
        limit=limit,
    )
    payload = IncidentListResponse(
        items=[_to_response(item, include_timeline=False) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        pages=result.pages,
    )
    return success_response(request=request, data=payload)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[IncidentResponse])
async def create_incident_route(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: IncidentCreateRequest,
    context: TenantContext = Depends(_write),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    incident = await create_incident(
        db,
        context,
        title=payload.title,
        description=payload.description,
        severity=payload.severity,
        assignees=payload.assignees,
        tags=payload.tags,
        affected_services=payload.affected_services,
        dispatcher=dispatcher,
        background_tasks=background_tasks,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=_to_response(incident))


@router.get("/{incident_id}", response_model=SuccessEnvelope[IncidentResponse])
async def get_incident_route(
    request: Request,
    incident_id: str,
    context: TenantContext = Depends(_read),
    db: AsyncSession = Depends(get_db),
) -> dict:
    incident = await get_incident(db, context.org.id, incident_id)
    return success_response(request=request, data=_to_response(incident))


@router.patch("/{incident_id}", response_model=SuccessEnvelope[IncidentUpdateResponse])
async def patch_incident_route(
    request: Request,
    background_tasks: BackgroundTasks,
    incident_id: str,
    payload: IncidentPatchRequest,
    context: TenantContext = Depends(_write),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict:
    # Only fields present in the body take part; explicit nulls clear the description.
    changes = IncidentChanges.from_mapping(payload.model_dump(exclude_unset=True))
    result = await apply_incident_update(
        db,
        context,
        incident_id,
        changes,
        dispatcher=dispatcher,
        background_tasks=background_tasks,
        request_context=get_request_context(request),
    )
    data = IncidentUpdateResponse(incident=_to_response(result.incident), changed=result.changed)
    return success_response(request=request, data=data)


@router.post(
    "/{incident_id}/notes",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[IncidentResponse],
)
async def add_note_route(
    request: Request,
    incident_id: str,
    payload: NoteRequest,
    context: TenantContext = Depends(_write),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await add_timeline_note(
        db,
        context,
        incident_id,
        text=payload.text,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=_to_response(result.incident))
