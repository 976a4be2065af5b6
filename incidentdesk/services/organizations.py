from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.core.errors import ValidationError
from incidentdesk.domain.models import Organization
from incidentdesk.services.audit import ACTION_UPDATE, RESOURCE_SETTINGS, record_event
from incidentdesk.services.features import FEATURE_KEYS, get_available_features
from incidentdesk.services.tenant import TenantContext


logger = logging.getLogger(__name__)


def _validate_features(features: dict[str, Any]) -> dict[str, bool]:
    unknown = sorted(key for key in features if key not in FEATURE_KEYS)
    if unknown:
        raise ValidationError("Unknown feature keys", details={"unknown": unknown})
    return {key: bool(value) for key, value in features.items()}


async def update_organization(
    session: AsyncSession,
    context: TenantContext,
    *,
    name: str | None = None,
    features: dict[str, Any] | None = None,
    request_context: dict[str, str | None] | None = None,
) -> Organization:
    """Rename the organization or merge feature overrides into its settings."""
    org = context.org
    changes: dict[str, Any] = {}
    if name is not None and name.strip():
        org.name = name.strip()
        changes["name"] = org.name
    if features is not None:
        overrides = _validate_features(features)
        # Reassign so the JSON column is flagged dirty.
        org.features_json = {**(org.features_json or {}), **overrides}
        changes["features"] = overrides
    if not changes:
        return org

    await session.commit()
    logger.info("organization_updated org_id=%s fields=%s", org.id, ",".join(sorted(changes)))
    request_context = request_context or {}
    await record_event(
        org_id=org.id,
        user_id=context.user.id,
        action=ACTION_UPDATE,
        resource_type=RESOURCE_SETTINGS,
        resource_id="organization",
        details={"changes": changes},
        request_id=request_context.get("request_id"),
        ip_address=request_context.get("ip_address"),
        user_agent=request_context.get("user_agent"),
    )
    return org


def serialize_organization(org: Organization) -> dict[str, Any]:
    return {
        "id": org.id,
        "name": org.name,
        "plan": org.plan,
        "features": dict(org.features_json or {}),
        "available_features": get_available_features(org),
        "subscription_status": org.subscription_status,
        "created_at": org.created_at.isoformat() if org.created_at else None,
    }
