from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.domain.models import Organization
from incidentdesk.persistence.repos import organizations as org_repo
from incidentdesk.services.audit import RESOURCE_BILLING, record_event
from incidentdesk.services.billing.plans import get_plan
from incidentdesk.services.billing.stripe_client import plan_from_price_id
from incidentdesk.services.features import DEFAULT_PLAN_ID


logger = logging.getLogger(__name__)

# Billing events have no human actor.
BILLING_ACTOR_ID = "stripe"

OUTCOME_PROCESSED = "processed"
OUTCOME_IGNORED = "ignored"
OUTCOME_ORG_NOT_FOUND = "org_not_found"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _first_price_id(subscription: dict[str, Any]) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return ((items[0] or {}).get("price") or {}).get("id")


def _period_end(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _apply_subscription(org: Organization, subscription: dict[str, Any]) -> dict[str, Any]:
    plan_id = plan_from_price_id(_first_price_id(subscription))
    org.plan = plan_id
    # A plan change resets overrides to the plan's own feature map.
    org.features_json = get_plan(plan_id).features
    org.stripe_subscription_id = subscription.get("id")
    org.subscription_status = subscription.get("status")
    org.current_period_end = _period_end(subscription.get("current_period_end"))
    return {"plan": plan_id, "subscription_status": org.subscription_status}


def _apply_cancellation(org: Organization) -> dict[str, Any]:
    org.plan = DEFAULT_PLAN_ID
    org.features_json = get_plan(DEFAULT_PLAN_ID).features
    org.subscription_status = "canceled"
    org.stripe_subscription_id = None
    org.current_period_end = None
    return {"plan": DEFAULT_PLAN_ID, "subscription_status": "canceled"}


def _apply_payment_failed(org: Organization) -> dict[str, Any]:
    org.payment_status = "failed"
    org.last_payment_attempt_at = _utc_now()
    return {"payment_status": "failed"}


def _apply_payment_succeeded(org: Organization, invoice: dict[str, Any]) -> dict[str, Any]:
    org.payment_status = "succeeded"
    # Stripe reports amounts in cents.
    return {"amount_paid": (invoice.get("amount_paid") or 0) / 100}


async def handle_stripe_event(session: AsyncSession, event: dict[str, Any]) -> str:
    """Apply one verified Stripe event to the owning organization.

    The organization is located by Stripe customer id. Unknown event types
    and unknown customers are acknowledged without writes so Stripe does not
    retry them forever.
    """
    event_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}
    customer_id = obj.get("customer")

    handled = {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.payment_succeeded",
        "invoice.payment_failed",
    }
    if event_type not in handled:
        logger.info("stripe_event_ignored event_type=%s", event_type)
        return OUTCOME_IGNORED
    if not customer_id:
        logger.warning("stripe_event_missing_customer event_type=%s", event_type)
        return OUTCOME_ORG_NOT_FOUND

    org = await org_repo.get_by_stripe_customer(session, str(customer_id))
    if org is None:
        logger.warning("stripe_event_org_not_found event_type=%s customer_id=%s", event_type, customer_id)
        return OUTCOME_ORG_NOT_FOUND

    if event_type in {"customer.subscription.created", "customer.subscription.updated"}:
        details = _apply_subscription(org, obj)
    elif event_type == "customer.subscription.deleted":
        details = _apply_cancellation(org)
    elif event_type == "invoice.payment_failed":
        details = _apply_payment_failed(org)
    else:
        details = _apply_payment_succeeded(org, obj)
    await session.commit()
    logger.info("stripe_event_processed event_type=%s org_id=%s", event_type, org.id)

    await record_event(
        org_id=org.id,
        user_id=BILLING_ACTOR_ID,
        action=event_type,
        resource_type=RESOURCE_BILLING,
        resource_id=org.id,
        details={"event_id": event.get("id"), **details},
        best_effort=True,
    )
    return OUTCOME_PROCESSED
