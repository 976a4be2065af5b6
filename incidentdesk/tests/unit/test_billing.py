from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest
import stripe

from incidentdesk.core.config import Settings
from incidentdesk.core.errors import BillingProviderError, ForbiddenError, ValidationError
from incidentdesk.services.billing.plans import (
    LIMIT_INCIDENTS,
    LIMIT_USERS,
    check_usage_limits,
    ensure_capacity,
    get_plan,
    serialize_plan,
)
from incidentdesk.services.billing.stripe_client import (
    StripeClient,
    construct_webhook_event,
    plan_from_price_id,
)
from incidentdesk.tests.utils.webhooks import stripe_signature_header


SECRET = "whsec_test"
PAYLOAD = json.dumps({"id": "evt_1", "type": "invoice.payment_succeeded"}).encode("utf-8")


def test_construct_event_accepts_fresh_signature() -> None:
    event = construct_webhook_event(PAYLOAD, stripe_signature_header(PAYLOAD, SECRET), SECRET)
    assert event == {"id": "evt_1", "type": "invoice.payment_succeeded"}


def test_construct_event_rejects_replayed_delivery() -> None:
    stale = stripe_signature_header(PAYLOAD, SECRET, timestamp=1_000_000_000)
    with pytest.raises(ValidationError) as exc_info:
        construct_webhook_event(PAYLOAD, stale, SECRET)
    assert exc_info.value.message == "Invalid signature"


def test_construct_event_rejects_header_without_timestamp() -> None:
    fresh = stripe_signature_header(PAYLOAD, SECRET)
    digest = fresh.split("v1=", 1)[1]
    with pytest.raises(ValidationError):
        construct_webhook_event(PAYLOAD, f"sha256={digest}", SECRET)


def test_construct_event_rejects_tampered_or_unsigned_payloads() -> None:
    header = stripe_signature_header(PAYLOAD, SECRET)
    for payload, signature, secret in (
        (PAYLOAD + b" ", header, SECRET),
        (PAYLOAD, header, "other-secret"),
        (PAYLOAD, header, None),
        (PAYLOAD, "garbage", SECRET),
    ):
        with pytest.raises(ValidationError):
            construct_webhook_event(payload, signature, secret)


def test_construct_event_rejects_signed_non_json_body() -> None:
    body = b"not json"
    with pytest.raises(ValidationError) as exc_info:
        construct_webhook_event(body, stripe_signature_header(body, SECRET), SECRET)
    assert exc_info.value.message == "Malformed webhook payload"


def test_plan_from_price_id_maps_configured_prices() -> None:
    settings = Settings(stripe_pro_price_id="price_pro", stripe_enterprise_price_id="price_ent")
    assert plan_from_price_id("price_pro", settings) == "pro"
    assert plan_from_price_id("price_ent", settings) == "enterprise"
    assert plan_from_price_id("price_unknown", settings) == "free"
    assert plan_from_price_id(None, settings) == "free"


def test_plan_catalog_limits_and_features() -> None:
    assert get_plan("free").max_users == 3
    assert get_plan("pro").max_incidents == 1000
    assert get_plan("missing").id == "free"
    serialized = serialize_plan(get_plan("pro"))
    assert serialized["features"]["problemManagement"] is True
    assert serialized["features"]["assetManagement"] is False
    assert serialized["limits"] == {"users": 25, "incidents": 1000}


def test_check_usage_limits_reports_overage() -> None:
    assert check_usage_limits("free", current_users=4, current_incidents=50) == {
        "users_exceeded": True,
        "incidents_exceeded": False,
    }
    assert check_usage_limits("enterprise", current_users=10_000, current_incidents=10_000) == {
        "users_exceeded": False,
        "incidents_exceeded": False,
    }


def test_ensure_capacity_blocks_at_limit() -> None:
    ensure_capacity("free", LIMIT_USERS, 2)
    with pytest.raises(ForbiddenError) as exc_info:
        ensure_capacity("free", LIMIT_USERS, 3)
    assert exc_info.value.code == "PLAN_LIMIT_REACHED"
    ensure_capacity("enterprise", LIMIT_INCIDENTS, 1_000_000)


@pytest.mark.asyncio
async def test_stripe_client_creates_checkout_session_through_sdk(monkeypatch) -> None:
    seen: list[dict[str, Any]] = []

    def fake_create(**kwargs: Any) -> SimpleNamespace:
        seen.append(kwargs)
        return SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    client = StripeClient(secret_key="sk_test")
    url = await client.create_checkout_session(
        customer_id="cus_1",
        price_id="price_pro",
        success_url="https://app/ok",
        cancel_url="https://app/cancel",
    )

    assert url == "https://checkout.stripe.test/cs_1"
    assert seen[0]["api_key"] == "sk_test"
    assert seen[0]["customer"] == "cus_1"
    assert seen[0]["mode"] == "subscription"
    assert seen[0]["line_items"] == [{"price": "price_pro", "quantity": 1}]


@pytest.mark.asyncio
async def test_stripe_client_raises_provider_error(monkeypatch) -> None:
    unconfigured = StripeClient(secret_key="")
    with pytest.raises(BillingProviderError):
        await unconfigured.create_customer(org_id="o", email="a@b.c", name="Acme")

    def rejecting_cancel(subscription_id: str, **kwargs: Any) -> Any:
        raise stripe.InvalidRequestError("No such subscription", "id", http_status=404)

    monkeypatch.setattr(stripe.Subscription, "cancel", rejecting_cancel)
    client = StripeClient(secret_key="sk_test")
    with pytest.raises(BillingProviderError) as exc_info:
        await client.cancel_subscription("sub_1")
    assert exc_info.value.details == {"operation": "cancel_subscription", "status_code": 404}
