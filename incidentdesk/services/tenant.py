from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.core.errors import ForbiddenError, UnauthorizedError
from incidentdesk.domain.models import Organization, User
from incidentdesk.persistence.repos import organizations as org_repo
from incidentdesk.persistence.repos import users as user_repo
from incidentdesk.services.auth.api_keys import CallerIdentity
from incidentdesk.services.authz import ROLE_ADMIN, can_access
from incidentdesk.services.features import DEFAULT_PLAN_ID, FEATURE_KEYS, FEATURE_INCIDENT_MANAGEMENT


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """Authenticated caller bound to the organization it belongs to.

    ``can_access`` is pre-bound to the user's roles so route code never reads
    ``roles_json`` directly.
    """

    org: Organization
    user: User
    can_access: Callable[[str], bool]

    @property
    def org_id(self) -> str:
        return self.org.id

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def roles(self) -> tuple[str, ...]:
        return tuple(self.user.roles_json or ())


def build_context(org: Organization, user: User) -> TenantContext:
    roles = tuple(user.roles_json or ())
    return TenantContext(org=org, user=user, can_access=lambda action: can_access(roles, action))


async def resolve_tenant(session: AsyncSession, identity: CallerIdentity | None) -> TenantContext:
    # Any gap between the identity and stored records is reported as unauthenticated.
    if identity is None or not identity.org_id or not identity.user_id:
        raise UnauthorizedError("Authentication required")
    org = await org_repo.get_organization(session, identity.org_id)
    user = await user_repo.get_user(session, identity.user_id)
    if org is None or user is None:
        logger.info(
            "tenant_resolution_failed org_id=%s user_id=%s reason=missing_record",
            identity.org_id,
            identity.user_id,
        )
        raise UnauthorizedError("Authentication required")
    if user.org_id != org.id or not user.is_active:
        logger.info(
            "tenant_resolution_failed org_id=%s user_id=%s reason=inactive_or_foreign_user",
            identity.org_id,
            identity.user_id,
        )
        raise UnauthorizedError("Authentication required")
    return build_context(org, user)


def validate_tenant(context: TenantContext, org_id: str) -> TenantContext:
    # Cross-tenant access is a distinct 403, never a 404, so callers can tell the cases apart.
    if context.org.id != org_id:
        logger.warning(
            "tenant_forbidden caller_org_id=%s requested_org_id=%s user_id=%s",
            context.org.id,
            org_id,
            context.user.id,
        )
        raise ForbiddenError(
            "Forbidden - invalid organization",
            code="TENANT_FORBIDDEN",
        )
    return context


def require_action(context: TenantContext, action: str) -> None:
    if not context.can_access(action):
        raise ForbiddenError("Insufficient permissions", details={"action": action})


async def bootstrap_organization(
    session: AsyncSession,
    *,
    email: str,
    name: str | None,
) -> tuple[Organization, User]:
    """Create a free-plan organization and its first admin for a new sign-up."""
    org = await org_repo.create_organization(
        session,
        org_id=uuid4().hex,
        name=f"{name}'s Organization" if name else "New Organization",
        plan=DEFAULT_PLAN_ID,
        features_json={key: key == FEATURE_INCIDENT_MANAGEMENT for key in FEATURE_KEYS},
    )
    await session.flush()
    user = await user_repo.create_user(
        session,
        user_id=uuid4().hex,
        org_id=org.id,
        email=email,
        name=name or "Unknown User",
        roles=[ROLE_ADMIN],
    )
    await session.commit()
    logger.info("organization_bootstrapped org_id=%s user_id=%s", org.id, user.id)
    return org, user
