from __future__ import annotations

import logging
import math
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.core.errors import ConflictError, NotFoundError, ValidationError
from incidentdesk.domain.models import User
from incidentdesk.persistence.repos import users as user_repo
from incidentdesk.services.audit import ACTION_INVITE, ACTION_UPDATE, RESOURCE_USER, record_event
from incidentdesk.services.authz import ROLE_MEMBER, normalize_roles
from incidentdesk.services.billing.plans import LIMIT_USERS, ensure_capacity
from incidentdesk.services.tenant import TenantContext


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


def _roles(roles: list[str] | None) -> list[str]:
    try:
        normalized = normalize_roles(roles if roles is not None else [ROLE_MEMBER])
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if not normalized:
        raise ValidationError("At least one role is required")
    return normalized


async def _audit(
    context: TenantContext,
    *,
    action: str,
    user_id: str,
    details: dict[str, Any],
    request_context: dict[str, str | None] | None,
) -> None:
    request_context = request_context or {}
    await record_event(
        org_id=context.org.id,
        user_id=context.user.id,
        action=action,
        resource_type=RESOURCE_USER,
        resource_id=user_id,
        details=details,
        request_id=request_context.get("request_id"),
        ip_address=request_context.get("ip_address"),
        user_agent=request_context.get("user_agent"),
    )


async def list_users(session: AsyncSession, org_id: str, *, page: int = 1, limit: int = 10) -> dict[str, Any]:
    page = max(1, int(page))
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    users, total = await user_repo.list_users(session, org_id, offset=(page - 1) * limit, limit=limit)
    return {
        "items": users,
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit),
    }


async def create_user(
    session: AsyncSession,
    context: TenantContext,
    *,
    email: str | None,
    name: str | None,
    roles: list[str] | None = None,
    request_context: dict[str, str | None] | None = None,
) -> User:
    cleaned_email = (email or "").strip().lower()
    cleaned_name = (name or "").strip()
    if not cleaned_email or not cleaned_name:
        raise ValidationError("Email and name are required")
    normalized_roles = _roles(roles)
    org_id = context.org.id
    if await user_repo.get_user_by_email(session, org_id, cleaned_email) is not None:
        raise ConflictError("User already exists in this organization", details={"email": cleaned_email})
    ensure_capacity(context.org.plan, LIMIT_USERS, await user_repo.count_active_users(session, org_id))

    user = await user_repo.create_user(
        session,
        user_id=uuid4().hex,
        org_id=org_id,
        email=cleaned_email,
        name=cleaned_name,
        roles=normalized_roles,
    )
    try:
        await session.commit()
    except IntegrityError as exc:
        # Concurrent invites for the same address lose on the unique constraint.
        await session.rollback()
        raise ConflictError("User already exists in this organization", details={"email": cleaned_email}) from exc
    logger.info("user_created org_id=%s user_id=%s", org_id, user.id)
    await _audit(
        context,
        action=ACTION_INVITE,
        user_id=user.id,
        details={"email": cleaned_email, "roles": normalized_roles},
        request_context=request_context,
    )
    return user


async def update_user(
    session: AsyncSession,
    context: TenantContext,
    user_id: str,
    *,
    name: str | None = None,
    roles: list[str] | None = None,
    is_active: bool | None = None,
    request_context: dict[str, str | None] | None = None,
) -> User:
    user = await user_repo.get_user_for_org(session, context.org.id, user_id)
    if user is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
    changes: dict[str, Any] = {}
    if name is not None and name.strip():
        user.name = name.strip()
        changes["name"] = user.name
    if roles is not None:
        user.roles_json = _roles(roles)
        changes["roles"] = user.roles_json
    if is_active is not None and is_active != user.is_active:
        user.is_active = is_active
        changes["is_active"] = is_active
    if not changes:
        return user
    await session.commit()
    logger.info("user_updated org_id=%s user_id=%s fields=%s", context.org.id, user_id, ",".join(sorted(changes)))
    await _audit(
        context,
        action=ACTION_UPDATE,
        user_id=user_id,
        details={"changes": changes},
        request_context=request_context,
    )
    return user


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "org_id": user.org_id,
        "email": user.email,
        "name": user.name,
        "roles": list(user.roles_json or []),
        "is_active": user.is_active,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
