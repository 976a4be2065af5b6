from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.apps.api.deps import get_db, get_tenant_context, require_access
from incidentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from incidentdesk.apps.api.response import success_response
from incidentdesk.services.audit import get_request_context
from incidentdesk.services.authz import ACTION_ORG_MANAGE
from incidentdesk.services.organizations import serialize_organization, update_organization
from incidentdesk.services.tenant import TenantContext


router = APIRouter(prefix="/orgs/{org_id}", tags=["organizations"], responses=DEFAULT_ERROR_RESPONSES)


class OrganizationPatchRequest(BaseModel):
    name: str | None = None
    # Feature key -> enabled override, merged into existing overrides.
    features: dict[str, bool] | None = None

    model_config = {"extra": "forbid"}


@router.get("")
async def get_organization(
    request: Request,
    context: TenantContext = Depends(get_tenant_context),
) -> dict[str, Any]:
    return success_response(request=request, data=serialize_organization(context.org))


@router.patch("")
async def patch_organization(
    request: Request,
    payload: OrganizationPatchRequest,
    context: TenantContext = Depends(require_access(ACTION_ORG_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    org = await update_organization(
        db,
        context,
        name=payload.name,
        features=payload.features,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=serialize_organization(org))
