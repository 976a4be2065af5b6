from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.domain.models import Organization


async def get_organization(session: AsyncSession, org_id: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.id == org_id))
    return result.scalar_one_or_none()


async def get_by_stripe_customer(session: AsyncSession, customer_id: str) -> Organization | None:
    # Billing webhooks only know the Stripe customer, never our org id.
    result = await session.execute(
        select(Organization).where(Organization.stripe_customer_id == customer_id)
    )
    return result.scalars().first()


async def create_organization(
    session: AsyncSession,
    *,
    org_id: str,
    name: str,
    plan: str,
    features_json: dict[str, bool] | None = None,
) -> Organization:
    org = Organization(id=org_id, name=name, plan=plan, features_json=dict(features_json or {}))
    session.add(org)
    return org


async def update_fields(
    session: AsyncSession,
    org_id: str,
    *,
    name: str | None = None,
    features_json: dict[str, bool] | None = None,
) -> Organization | None:
    # Fetch first so missing orgs surface as None instead of silent no-op updates.
    org = await get_organization(session, org_id)
    if org is None:
        return None
    if name is not None:
        org.name = name
    if features_json is not None:
        # Reassign instead of mutating so SQLAlchemy tracks the JSON change.
        org.features_json = {**(org.features_json or {}), **features_json}
    return org
