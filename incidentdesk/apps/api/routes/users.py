from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.apps.api.deps import get_db, require_access
from incidentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from incidentdesk.apps.api.response import success_response
from incidentdesk.services.audit import get_request_context
from incidentdesk.services.authz import ACTION_USERS_MANAGE
from incidentdesk.services.tenant import TenantContext
from incidentdesk.services.users import create_user, list_users, serialize_user, update_user


router = APIRouter(prefix="/orgs/{org_id}/users", tags=["users"], responses=DEFAULT_ERROR_RESPONSES)

_manage = require_access(ACTION_USERS_MANAGE)


class UserCreateRequest(BaseModel):
    email: str | None = None
    name: str | None = None
    roles: list[str] | None = None

    model_config = {"extra": "forbid"}


class UserPatchRequest(BaseModel):
    name: str | None = None
    roles: list[str] | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


@router.get("")
async def list_users_route(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    context: TenantContext = Depends(_manage),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await list_users(db, context.org.id, page=page, limit=limit)
    result["items"] = [serialize_user(user) for user in result["items"]]
    return success_response(request=request, data=result)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user_route(
    request: Request,
    payload: UserCreateRequest,
    context: TenantContext = Depends(_manage),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await create_user(
        db,
        context,
        email=payload.email,
        name=payload.name,
        roles=payload.roles,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=serialize_user(user))


@router.patch("/{user_id}")
async def patch_user_route(
    request: Request,
    user_id: str,
    payload: UserPatchRequest,
    context: TenantContext = Depends(_manage),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await update_user(
        db,
        context,
        user_id,
        name=payload.name,
        roles=payload.roles,
        is_active=payload.is_active,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=serialize_user(user))
