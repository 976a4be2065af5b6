from __future__ import annotations

import pytest

from incidentdesk.core.errors import ForbiddenError
from incidentdesk.domain.models import Organization
from incidentdesk.services.features import (
    FEATURE_ASSET_MANAGEMENT,
    FEATURE_CHANGE_MANAGEMENT,
    FEATURE_INCIDENT_MANAGEMENT,
    FEATURE_KEYS,
    FEATURE_PROBLEM_MANAGEMENT,
    can_upgrade_feature,
    get_available_features,
    has_feature,
    require_feature,
)


def _org(plan: str, features: dict[str, bool] | None = None) -> Organization:
    return Organization(id="org-1", name="Acme", plan=plan, features_json=features or {})


def test_free_plan_only_grants_incident_management() -> None:
    org = _org("free")
    assert has_feature(org, FEATURE_INCIDENT_MANAGEMENT)
    assert not has_feature(org, FEATURE_PROBLEM_MANAGEMENT)
    assert get_available_features(org) == [FEATURE_INCIDENT_MANAGEMENT]


def test_enterprise_plan_grants_every_feature() -> None:
    org = _org("enterprise")
    assert all(has_feature(org, key) for key in FEATURE_KEYS)
    assert get_available_features(org) == list(FEATURE_KEYS)


def test_override_grants_feature_beyond_plan() -> None:
    org = _org("free", {FEATURE_PROBLEM_MANAGEMENT: True})
    assert has_feature(org, FEATURE_PROBLEM_MANAGEMENT)
    assert get_available_features(org) == [FEATURE_INCIDENT_MANAGEMENT, FEATURE_PROBLEM_MANAGEMENT]


def test_false_override_does_not_hide_plan_feature() -> None:
    org = _org("pro", {FEATURE_INCIDENT_MANAGEMENT: False, FEATURE_CHANGE_MANAGEMENT: False})
    assert has_feature(org, FEATURE_INCIDENT_MANAGEMENT)
    assert not has_feature(org, FEATURE_CHANGE_MANAGEMENT)


def test_unknown_plan_has_no_features() -> None:
    org = _org("legacy")
    assert not has_feature(org, FEATURE_INCIDENT_MANAGEMENT)
    assert get_available_features(org) == []


def test_upgrade_available_only_for_higher_tiers() -> None:
    assert can_upgrade_feature(_org("free"), FEATURE_PROBLEM_MANAGEMENT)
    assert can_upgrade_feature(_org("pro"), FEATURE_ASSET_MANAGEMENT)
    assert not can_upgrade_feature(_org("pro"), FEATURE_INCIDENT_MANAGEMENT)
    assert not can_upgrade_feature(_org("enterprise"), FEATURE_ASSET_MANAGEMENT)


def test_require_feature_raises_stable_payload() -> None:
    with pytest.raises(ForbiddenError) as exc_info:
        require_feature(_org("free"), FEATURE_CHANGE_MANAGEMENT)
    assert exc_info.value.code == "FEATURE_NOT_ENABLED"
    assert exc_info.value.details == {
        "feature_key": FEATURE_CHANGE_MANAGEMENT,
        "upgrade_available": True,
    }
