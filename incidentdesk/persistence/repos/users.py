from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.domain.models import ApiKey, User
from incidentdesk.persistence.guards import org_predicate


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    # Unscoped lookup used by tenant resolution; callers compare org ownership.
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_for_org(session: AsyncSession, org_id: str, user_id: str) -> User | None:
    result = await session.execute(
        select(User).where(User.id == user_id, org_predicate(User, org_id))
    )
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, org_id: str, email: str) -> User | None:
    result = await session.execute(
        select(User).where(org_predicate(User, org_id), User.email == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def list_users(
    session: AsyncSession, org_id: str, *, offset: int = 0, limit: int = 10
) -> tuple[list[User], int]:
    # Oldest first so pages stay stable while new users are invited.
    total_stmt = select(func.count()).select_from(User).where(org_predicate(User, org_id))
    total = int((await session.execute(total_stmt)).scalar() or 0)
    result = await session.execute(
        select(User)
        .where(org_predicate(User, org_id))
        .order_by(User.created_at, User.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def list_users_by_ids(session: AsyncSession, org_id: str, user_ids: list[str]) -> list[User]:
    if not user_ids:
        return []
    result = await session.execute(
        select(User).where(org_predicate(User, org_id), User.id.in_(user_ids))
    )
    return list(result.scalars().all())


async def count_active_users(session: AsyncSession, org_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(User).where(org_predicate(User, org_id), User.is_active.is_(True))
    )
    return int(result.scalar() or 0)


async def create_user(
    session: AsyncSession,
    *,
    user_id: str,
    org_id: str,
    email: str,
    name: str,
    roles: list[str],
) -> User:
    user = User(
        id=user_id,
        org_id=org_id,
        email=email.strip().lower(),
        name=name,
        roles_json=list(roles),
        is_active=True,
    )
    session.add(user)
    return user


async def create_api_key(
    session: AsyncSession,
    *,
    key_id: str,
    user_id: str,
    org_id: str,
    key_prefix: str,
    key_hash: str,
    name: str | None = None,
) -> ApiKey:
    # Persist only the hash; the raw key is shown to the operator once.
    api_key = ApiKey(
        id=key_id,
        user_id=user_id,
        org_id=org_id,
        key_prefix=key_prefix,
        key_hash=key_hash,
        name=name,
    )
    session.add(api_key)
    return api_key
