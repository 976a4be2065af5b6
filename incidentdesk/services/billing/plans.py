from __future__ import annotations

from dataclasses import dataclass

from incidentdesk.core.errors import ForbiddenError
from incidentdesk.services.features import DEFAULT_PLAN_ID, FEATURE_KEYS, PLAN_FEATURES


UNLIMITED = -1
LIMIT_USERS = "users"
LIMIT_INCIDENTS = "incidents"


@dataclass(frozen=True)
class SubscriptionPlan:
    id: str
    name: str
    price: int
    interval: str
    max_users: int
    max_incidents: int

    @property
    def features(self) -> dict[str, bool]:
        # Full feature map in catalog order; derived from the resolver table so both stay aligned.
        enabled = set(PLAN_FEATURES.get(self.id, ()))
        return {key: key in enabled for key in FEATURE_KEYS}

    def limit_for(self, kind: str) -> int:
        if kind == LIMIT_USERS:
            return self.max_users
        if kind == LIMIT_INCIDENTS:
            return self.max_incidents
        raise ValueError(f"Unsupported plan limit: {kind}")


SUBSCRIPTION_PLANS: dict[str, SubscriptionPlan] = {
    "free": SubscriptionPlan(id="free", name="Free", price=0, interval="month", max_users=3, max_incidents=50),
    "pro": SubscriptionPlan(id="pro", name="Pro", price=29, interval="month", max_users=25, max_incidents=1000),
    "enterprise": SubscriptionPlan(
        id="enterprise",
        name="Enterprise",
        price=99,
        interval="month",
        max_users=UNLIMITED,
        max_incidents=UNLIMITED,
    ),
}


def get_plan(plan_id: str | None) -> SubscriptionPlan:
    # Unknown plan ids fall back to the free catalog entry for limits and pricing.
    return SUBSCRIPTION_PLANS.get(plan_id or "", SUBSCRIPTION_PLANS[DEFAULT_PLAN_ID])


def check_usage_limits(plan_id: str | None, *, current_users: int, current_incidents: int) -> dict[str, bool]:
    # Report whether current usage is already above the plan's limits.
    plan = get_plan(plan_id)
    return {
        "users_exceeded": plan.max_users > 0 and current_users > plan.max_users,
        "incidents_exceeded": plan.max_incidents > 0 and current_incidents > plan.max_incidents,
    }


def ensure_capacity(plan_id: str | None, kind: str, current: int) -> None:
    # Block creating one more resource once the plan limit is reached.
    plan = get_plan(plan_id)
    limit = plan.limit_for(kind)
    if limit >= 0 and current >= limit:
        raise ForbiddenError(
            f"Plan limit reached for {kind}",
            code="PLAN_LIMIT_REACHED",
            details={"plan": plan.id, "limit": limit, "resource": kind},
        )


def serialize_plan(plan: SubscriptionPlan) -> dict:
    return {
        "id": plan.id,
        "name": plan.name,
        "price": plan.price,
        "interval": plan.interval,
        "features": plan.features,
        "limits": {LIMIT_USERS: plan.max_users, LIMIT_INCIDENTS: plan.max_incidents},
    }
