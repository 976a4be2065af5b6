from __future__ import annotations

from typing import Any

from incidentdesk.services.notifications import IncidentNotification


class RecordingDispatcher:
    """Collects notifications instead of sending them."""

    def __init__(self) -> None:
        self.notifications: list[IncidentNotification] = []

    async def notify(self, notification: IncidentNotification) -> dict[str, bool]:
        self.notifications.append(notification)
        return {"slack": True}

    async def aclose(self) -> None:
        return None


class FailingDispatcher(RecordingDispatcher):
    async def notify(self, notification: IncidentNotification) -> dict[str, bool]:
        self.notifications.append(notification)
        raise RuntimeError("notification backend down")


class FakeStripeClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def create_customer(self, *, org_id: str, email: str, name: str) -> str:
        self.calls.append(("create_customer", {"org_id": org_id, "email": email, "name": name}))
        return "cus_test"

    async def create_checkout_session(self, **kwargs: Any) -> str:
        self.calls.append(("create_checkout_session", kwargs))
        return "https://checkout.stripe.test/session"

    async def create_portal_session(self, **kwargs: Any) -> str:
        self.calls.append(("create_portal_session", kwargs))
        return "https://billing.stripe.test/portal"

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        self.calls.append(("cancel_subscription", {"subscription_id": subscription_id}))
        return {"id": subscription_id, "status": "canceled"}
