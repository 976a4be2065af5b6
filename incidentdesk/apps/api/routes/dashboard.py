from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.apps.api.deps import get_db, require_feature_access
from incidentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from incidentdesk.apps.api.response import success_response
from incidentdesk.services.authz import ACTION_INCIDENTS_READ
from incidentdesk.services.dashboard import dashboard_stats
from incidentdesk.services.features import FEATURE_INCIDENT_MANAGEMENT
from incidentdesk.services.tenant import TenantContext


router = APIRouter(prefix="/orgs/{org_id}/dashboard", tags=["dashboard"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("")
async def get_dashboard(
    request: Request,
    context: TenantContext = Depends(require_feature_access(FEATURE_INCIDENT_MANAGEMENT, ACTION_INCIDENTS_READ)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return success_response(request=request, data=await dashboard_stats(db, context.org.id))
