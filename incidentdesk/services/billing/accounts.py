from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.core.config import get_settings
from incidentdesk.core.errors import ValidationError
from incidentdesk.persistence.repos import incidents as incidents_repo
from incidentdesk.persistence.repos import users as user_repo
from incidentdesk.services.audit import RESOURCE_BILLING, record_event
from incidentdesk.services.billing.plans import SUBSCRIPTION_PLANS, get_plan, serialize_plan
from incidentdesk.services.billing.stripe_client import StripeClient, price_ids
from incidentdesk.services.tenant import TenantContext


logger = logging.getLogger(__name__)

BILLING_ACTIONS = ("create-checkout-session", "create-portal-session", "cancel-subscription")


async def billing_overview(session: AsyncSession, context: TenantContext) -> dict[str, Any]:
    org = context.org
    plan = get_plan(org.plan)
    return {
        "current_plan": serialize_plan(plan),
        "subscription": {
            "status": org.subscription_status or "inactive",
            "current_period_end": org.current_period_end.isoformat() if org.current_period_end else None,
            "customer_id": org.stripe_customer_id,
            "payment_status": org.payment_status,
        },
        "available_plans": [serialize_plan(item) for item in SUBSCRIPTION_PLANS.values()],
        "usage": {
            "users": await user_repo.count_active_users(session, org.id),
            "incidents": await incidents_repo.count_incidents(session, org.id),
        },
    }


def _billing_urls(org_id: str) -> tuple[str, str, str]:
    base_url = get_settings().app_base_url.rstrip("/")
    page = f"{base_url}/dashboard/{org_id}/billing"
    return f"{page}?success=true", f"{page}?canceled=true", page


async def perform_billing_action(
    session: AsyncSession,
    context: TenantContext,
    stripe: StripeClient,
    *,
    action: str,
    plan_id: str | None = None,
    request_context: dict[str, str | None] | None = None,
) -> dict[str, Any]:
    """Run one self-serve billing action against Stripe.

    Plan changes themselves arrive later through webhooks; this only opens
    Stripe sessions or requests a cancellation.
    """
    org = context.org
    success_url, cancel_url, return_url = _billing_urls(org.id)
    result: dict[str, Any]

    if action == "create-checkout-session":
        price_id = price_ids().get(plan_id or "")
        if not plan_id or price_id is None:
            raise ValidationError("Invalid plan for checkout", details={"plan_id": plan_id})
        if not org.stripe_customer_id:
            org.stripe_customer_id = await stripe.create_customer(
                org_id=org.id,
                email=context.user.email,
                name=org.name,
            )
            await session.commit()
        checkout_url = await stripe.create_checkout_session(
            customer_id=org.stripe_customer_id,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
        )
        result = {"checkout_url": checkout_url}
    elif action == "create-portal-session":
        if not org.stripe_customer_id:
            raise ValidationError("No billing customer for organization")
        result = {
            "portal_url": await stripe.create_portal_session(
                customer_id=org.stripe_customer_id,
                return_url=return_url,
            )
        }
    elif action == "cancel-subscription":
        if not org.stripe_subscription_id:
            raise ValidationError("No active subscription")
        await stripe.cancel_subscription(org.stripe_subscription_id)
        result = {"canceled": True}
    else:
        raise ValidationError("Invalid billing action", details={"allowed": list(BILLING_ACTIONS)})

    logger.info("billing_action_completed org_id=%s action=%s", org.id, action)
    request_context = request_context or {}
    await record_event(
        org_id=org.id,
        user_id=context.user.id,
        action=action,
        resource_type=RESOURCE_BILLING,
        resource_id=org.id,
        details={"plan_id": plan_id} if plan_id else {},
        request_id=request_context.get("request_id"),
        ip_address=request_context.get("ip_address"),
        user_agent=request_context.get("user_agent"),
    )
    return result
