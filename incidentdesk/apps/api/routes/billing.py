from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.apps.api.deps import get_db, get_stripe_client, require_access
from incidentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from incidentdesk.apps.api.response import success_response
from incidentdesk.services.audit import get_request_context
from incidentdesk.services.authz import ACTION_BILLING_MANAGE
from incidentdesk.services.billing.accounts import billing_overview, perform_billing_action
from incidentdesk.services.billing.stripe_client import StripeClient
from incidentdesk.services.tenant import TenantContext


router = APIRouter(prefix="/orgs/{org_id}/billing", tags=["billing"], responses=DEFAULT_ERROR_RESPONSES)

_billing_admin = require_access(ACTION_BILLING_MANAGE)


class BillingActionRequest(BaseModel):
    action: str
    plan_id: str | None = None

    model_config = {"extra": "forbid"}


@router.get("")
async def get_billing(
    request: Request,
    context: TenantContext = Depends(_billing_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return success_response(request=request, data=await billing_overview(db, context))


@router.post("")
async def post_billing_action(
    request: Request,
    payload: BillingActionRequest,
    context: TenantContext = Depends(_billing_admin),
    db: AsyncSession = Depends(get_db),
    stripe: StripeClient = Depends(get_stripe_client),
) -> dict[str, Any]:
    result = await perform_billing_action(
        db,
        context,
        stripe,
        action=payload.action,
        plan_id=payload.plan_id,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=result)
