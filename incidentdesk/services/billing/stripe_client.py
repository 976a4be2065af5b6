from __future__ import annotations

import asyncio
from functools import partial
import json
import logging
from typing import Any, Callable

import stripe

from incidentdesk.core.config import Settings, get_settings
from incidentdesk.core.errors import BillingProviderError, ValidationError
from incidentdesk.services.features import DEFAULT_PLAN_ID


logger = logging.getLogger(__name__)


def construct_webhook_event(
    payload: bytes,
    signature: str,
    secret: str | None,
    *,
    tolerance_s: int | None = None,
) -> dict[str, Any]:
    """Verify a Stripe webhook delivery and return its event body.

    ``stripe.Webhook.construct_event`` checks the ``t=...,v1=...`` header
    against the raw body and rejects timestamps outside the tolerance window,
    so a captured delivery cannot be replayed later. Every failure surfaces as
    a ``ValidationError``.
    """
    if not secret:
        logger.warning("stripe_webhook_secret_missing")
        raise ValidationError("Invalid signature")
    resolved_tolerance = tolerance_s if tolerance_s is not None else get_settings().stripe_webhook_tolerance_s
    try:
        stripe.Webhook.construct_event(payload, signature, secret, tolerance=resolved_tolerance)
    except ValueError as exc:
        logger.warning("stripe_webhook_payload_invalid")
        raise ValidationError("Malformed webhook payload") from exc
    except stripe.SignatureVerificationError as exc:
        logger.warning("stripe_webhook_invalid_signature")
        raise ValidationError("Invalid signature") from exc
    # Handlers work on the plain JSON body; the SDK event is only used for verification.
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise ValidationError("Malformed webhook payload")
    return event


def price_ids(settings: Settings | None = None) -> dict[str, str | None]:
    resolved = settings or get_settings()
    return {
        "free": None,
        "pro": resolved.stripe_pro_price_id,
        "enterprise": resolved.stripe_enterprise_price_id,
    }


def plan_from_price_id(price_id: str | None, settings: Settings | None = None) -> str:
    # Unknown prices map to the free plan rather than failing the webhook.
    for plan_id, configured in price_ids(settings).items():
        if configured is not None and configured == price_id:
            return plan_id
    return DEFAULT_PLAN_ID


class StripeClient:
    """Async wrapper over the blocking Stripe SDK calls the billing flows need."""

    def __init__(self, *, secret_key: str | None = None) -> None:
        self._secret_key = secret_key if secret_key is not None else get_settings().stripe_secret_key

    @property
    def configured(self) -> bool:
        return bool(self._secret_key)

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if not self._secret_key:
            raise BillingProviderError("Stripe not configured")
        loop = asyncio.get_running_loop()
        try:
            # The SDK is synchronous; keep it off the event loop.
            return await loop.run_in_executor(None, partial(func, *args, api_key=self._secret_key, **kwargs))
        except stripe.StripeError as exc:
            logger.warning(
                "stripe_request_failed operation=%s status=%s",
                operation,
                exc.http_status,
                exc_info=exc,
            )
            raise BillingProviderError(
                "Stripe request failed",
                details={"operation": operation, "status_code": exc.http_status},
            ) from exc

    async def create_customer(self, *, org_id: str, email: str, name: str) -> str:
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"organization_id": org_id},
        )
        logger.info("stripe_customer_created org_id=%s customer_id=%s", org_id, customer.id)
        return str(customer.id)

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create,
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            allow_promotion_codes=True,
        )
        return str(session.url)

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return str(session.url)

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        subscription = await self._call(
            "cancel_subscription",
            stripe.Subscription.cancel,
            subscription_id,
        )
        return {"id": subscription.id, "status": subscription.status}
