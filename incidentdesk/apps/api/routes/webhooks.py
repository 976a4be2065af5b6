from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.apps.api.deps import get_db
from incidentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from incidentdesk.apps.api.response import success_response
from incidentdesk.core.config import get_settings
from incidentdesk.core.errors import ValidationError
from incidentdesk.services.billing.stripe_client import construct_webhook_event
from incidentdesk.services.billing.webhooks import handle_stripe_event


router = APIRouter(prefix="/webhooks", tags=["webhooks"], responses=DEFAULT_ERROR_RESPONSES)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Verify against the raw body; re-serialized JSON would not match the signature.
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise ValidationError("No signature provided")
    event = construct_webhook_event(body, signature, get_settings().stripe_webhook_secret)

    outcome = await handle_stripe_event(db, event)
    return success_response(request=request, data={"received": True, "outcome": outcome})
