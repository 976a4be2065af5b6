from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncGenerator, Callable

from fastapi import Depends, Request
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.core.config import get_settings
from incidentdesk.core.errors import UnauthorizedError
from incidentdesk.domain.models import ApiKey
from incidentdesk.persistence.db import SessionLocal, get_session
from incidentdesk.services.auth.api_keys import CallerIdentity, authenticate, hash_api_key
from incidentdesk.services.billing.stripe_client import StripeClient
from incidentdesk.services.features import require_feature
from incidentdesk.services.notifications import NotificationDispatcher
from incidentdesk.services.tenant import TenantContext, require_action, resolve_tenant, validate_tenant


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


_auth_cache: dict[str, tuple[float, CallerIdentity]] = {}
_auth_cache_lock = asyncio.Lock()


def clear_auth_cache() -> None:
    _auth_cache.clear()


async def _get_cached_identity(key_hash: str, ttl_s: int) -> CallerIdentity | None:
    # Cache identities briefly to reduce auth DB load between requests.
    if ttl_s <= 0:
        return None
    now = time.time()
    async with _auth_cache_lock:
        entry = _auth_cache.get(key_hash)
        if not entry:
            return None
        expires_at, identity = entry
        if expires_at <= now:
            _auth_cache.pop(key_hash, None)
            return None
        return identity


async def _set_cached_identity(key_hash: str, identity: CallerIdentity, ttl_s: int) -> None:
    if ttl_s <= 0:
        return
    async with _auth_cache_lock:
        _auth_cache[key_hash] = (time.time() + ttl_s, identity)


def _parse_bearer_token(header_value: str | None) -> str | None:
    # Enforce Bearer token format for API key authentication.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Missing or invalid bearer token")
    return parts[1]


def _identity_from_dev_headers(request: Request) -> CallerIdentity | None:
    # Header identities exist only for local development; they are never trusted otherwise.
    org_id = request.headers.get("X-Org-Id")
    user_id = request.headers.get("X-User-Id")
    if not org_id or not user_id:
        return None
    return CallerIdentity(user_id=user_id, org_id=org_id, api_key_id="dev-bypass", auth_method="dev_bypass")


async def _touch_last_used(api_key_id: str) -> None:
    # Update last_used_at outside the request transaction.
    async with SessionLocal() as session:
        try:
            await session.execute(update(ApiKey).where(ApiKey.id == api_key_id).values(last_used_at=func.now()))
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("api_key_touch_failed api_key_id=%s", api_key_id, exc_info=exc)


async def get_caller_identity(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CallerIdentity | None:
    settings = get_settings()
    if settings.auth_dev_bypass:
        identity = _identity_from_dev_headers(request)
        if identity is not None:
            return identity
    if not settings.auth_enabled:
        return None

    raw_key = _parse_bearer_token(request.headers.get(settings.auth_api_key_header))
    if raw_key is None:
        return None
    key_hash = hash_api_key(raw_key)
    cached = await _get_cached_identity(key_hash, settings.auth_cache_ttl_s)
    if cached is not None:
        return cached
    identity = await authenticate(db, raw_key)
    if identity is None:
        logger.info("auth_failed reason=invalid_api_key path=%s", request.url.path)
        raise UnauthorizedError("Invalid or revoked API key")
    await _set_cached_identity(key_hash, identity, settings.auth_cache_ttl_s)
    await _touch_last_used(identity.api_key_id)
    return identity


async def get_current_context(
    identity: CallerIdentity | None = Depends(get_caller_identity),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    return await resolve_tenant(db, identity)


async def get_tenant_context(
    org_id: str,
    context: TenantContext = Depends(get_current_context),
) -> TenantContext:
    # Every /orgs/{org_id} route binds the path org to the caller's org before any read.
    return validate_tenant(context, org_id)


def require_access(action: str) -> Callable[..., TenantContext]:
    async def dependency(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        require_action(context, action)
        return context

    return dependency


def require_feature_access(feature: str, action: str) -> Callable[..., TenantContext]:
    # Feature gate first so plan problems surface before role problems.
    async def dependency(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        require_feature(context.org, feature)
        require_action(context, action)
        return context

    return dependency


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_stripe_client(request: Request) -> StripeClient:
    return request.app.state.stripe_client
