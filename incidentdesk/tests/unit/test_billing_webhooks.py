from __future__ import annotations

import pytest

from incidentdesk.persistence.db import SessionLocal
from incidentdesk.persistence.repos import audit as audit_repo
from incidentdesk.persistence.repos import organizations as org_repo
from incidentdesk.services.billing.webhooks import handle_stripe_event
from incidentdesk.tests.utils.auth import create_test_org


pytestmark = pytest.mark.usefixtures("db_schema")


def _subscription_event(event_type: str, *, customer: str, price_id: str = "price_pro_monthly") -> dict:
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {
            "object": {
                "id": "sub_1",
                "customer": customer,
                "status": "active",
                "current_period_end": 1735689600,
                "items": {"data": [{"price": {"id": price_id}}]},
            }
        },
    }


@pytest.mark.asyncio
async def test_subscription_update_switches_plan_and_features() -> None:
    org_id = await create_test_org(stripe_customer_id="cus_abc")
    async with SessionLocal() as session:
        outcome = await handle_stripe_event(
            session, _subscription_event("customer.subscription.updated", customer="cus_abc")
        )
    assert outcome == "processed"

    async with SessionLocal() as session:
        org = await org_repo.get_organization(session, org_id)
        events = await audit_repo.list_events(session, org_id=org_id)
    assert org.plan == "pro"
    assert org.features_json["problemManagement"] is True
    assert org.stripe_subscription_id == "sub_1"
    assert org.subscription_status == "active"
    assert org.current_period_end is not None
    assert [(event.user_id, event.action) for event in events] == [("stripe", "customer.subscription.updated")]


@pytest.mark.asyncio
async def test_subscription_deleted_reverts_to_free() -> None:
    org_id = await create_test_org(plan="enterprise", stripe_customer_id="cus_del")
    async with SessionLocal() as session:
        outcome = await handle_stripe_event(
            session,
            {"id": "evt_2", "type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_del"}}},
        )
    assert outcome == "processed"
    async with SessionLocal() as session:
        org = await org_repo.get_organization(session, org_id)
    assert org.plan == "free"
    assert org.subscription_status == "canceled"
    assert org.stripe_subscription_id is None
    assert org.features_json["assetManagement"] is False


@pytest.mark.asyncio
async def test_payment_failure_marks_org() -> None:
    org_id = await create_test_org(stripe_customer_id="cus_pay")
    async with SessionLocal() as session:
        await handle_stripe_event(
            session,
            {"id": "evt_3", "type": "invoice.payment_failed", "data": {"object": {"customer": "cus_pay"}}},
        )
    async with SessionLocal() as session:
        org = await org_repo.get_organization(session, org_id)
    assert org.payment_status == "failed"
    assert org.last_payment_attempt_at is not None


@pytest.mark.asyncio
async def test_unknown_customer_and_event_type_are_acknowledged() -> None:
    async with SessionLocal() as session:
        missing = await handle_stripe_event(
            session, _subscription_event("customer.subscription.created", customer="cus_nobody")
        )
        ignored = await handle_stripe_event(session, {"type": "charge.refunded", "data": {"object": {}}})
    assert missing == "org_not_found"
    assert ignored == "ignored"
