from __future__ import annotations

import logging

from incidentdesk.core.errors import ForbiddenError
from incidentdesk.domain.models import Organization


logger = logging.getLogger(__name__)

FEATURE_INCIDENT_MANAGEMENT = "incidentManagement"
FEATURE_PROBLEM_MANAGEMENT = "problemManagement"
FEATURE_CHANGE_MANAGEMENT = "changeManagement"
FEATURE_REQUEST_FULFILLMENT = "requestFulfillment"
FEATURE_SERVICE_CATALOG = "serviceCatalog"
FEATURE_KNOWLEDGE_BASE = "knowledgeBase"
FEATURE_ASSET_MANAGEMENT = "assetManagement"
FEATURE_SLA_MANAGEMENT = "slaManagement"

FEATURE_KEYS = (
    FEATURE_INCIDENT_MANAGEMENT,
    FEATURE_PROBLEM_MANAGEMENT,
    FEATURE_CHANGE_MANAGEMENT,
    FEATURE_REQUEST_FULFILLMENT,
    FEATURE_SERVICE_CATALOG,
    FEATURE_KNOWLEDGE_BASE,
    FEATURE_ASSET_MANAGEMENT,
    FEATURE_SLA_MANAGEMENT,
)

DEFAULT_PLAN_ID = "free"
# Plans in ascending tier order; upgrade checks only look strictly upwards.
PLAN_ORDER = ("free", "pro", "enterprise")

PLAN_FEATURES: dict[str, tuple[str, ...]] = {
    "free": (FEATURE_INCIDENT_MANAGEMENT,),
    "pro": (
        FEATURE_INCIDENT_MANAGEMENT,
        FEATURE_PROBLEM_MANAGEMENT,
        FEATURE_REQUEST_FULFILLMENT,
        FEATURE_KNOWLEDGE_BASE,
        FEATURE_SLA_MANAGEMENT,
    ),
    "enterprise": FEATURE_KEYS,
}


def plan_features(plan_id: str | None) -> tuple[str, ...]:
    # Unknown plans resolve to no features so misconfigured orgs fail closed.
    return PLAN_FEATURES.get(plan_id or "", ())


def _overrides(org: Organization) -> dict[str, bool]:
    raw = org.features_json or {}
    return {str(key): value is True for key, value in raw.items()}


def has_feature(org: Organization, feature: str) -> bool:
    # Explicit overrides can only grant; a false override never hides a plan feature.
    if _overrides(org).get(feature) is True:
        return True
    return feature in plan_features(org.plan)


def get_available_features(org: Organization) -> list[str]:
    # Union of plan defaults and granted overrides, plan order first, no duplicates.
    available: dict[str, None] = dict.fromkeys(plan_features(org.plan))
    for feature, enabled in _overrides(org).items():
        if enabled:
            available.setdefault(feature, None)
    return list(available)


def can_upgrade_feature(org: Organization, feature: str) -> bool:
    # A feature is upgradeable when a strictly higher tier includes it.
    if feature in plan_features(org.plan):
        return False
    current_rank = PLAN_ORDER.index(org.plan) if org.plan in PLAN_ORDER else -1
    return any(feature in PLAN_FEATURES[plan_id] for plan_id in PLAN_ORDER[current_rank + 1 :])


def require_feature(org: Organization, feature: str) -> None:
    # Use a stable 403 payload when the plan blocks a feature.
    if not has_feature(org, feature):
        logger.info("feature_not_enabled org_id=%s plan=%s feature=%s", org.id, org.plan, feature)
        raise ForbiddenError(
            "Feature not enabled for organization plan",
            code="FEATURE_NOT_ENABLED",
            details={"feature_key": feature, "upgrade_available": can_upgrade_feature(org, feature)},
        )
