from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import secrets
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from incidentdesk.domain.models import ApiKey


API_KEY_PREFIX = "idk"


@dataclass(frozen=True)
class CallerIdentity:
    # Minimal identity handed from the auth layer to tenant resolution.
    user_id: str
    org_id: str
    api_key_id: str
    auth_method: str = "api_key"


def hash_api_key(raw_key: str) -> str:
    # Use SHA-256 for deterministic, non-reversible key storage.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(*, key_id: str | None = None) -> tuple[str, str, str, str]:
    # Embed the key id in the token so operators can trace secrets safely.
    resolved_id = key_id or uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_key = f"{API_KEY_PREFIX}_{resolved_id}_{secret}"
    key_prefix = raw_key[:12]
    return resolved_id, raw_key, key_prefix, hash_api_key(raw_key)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_key_usable(api_key: ApiKey, *, now: datetime | None = None) -> bool:
    if api_key.revoked_at is not None:
        return False
    if api_key.expires_at is not None:
        current = now or datetime.now(timezone.utc)
        if _as_utc(api_key.expires_at) <= current:
            return False
    return True


async def authenticate(session: AsyncSession, raw_key: str | None) -> CallerIdentity | None:
    """Resolve a bearer API key to the caller it was issued for.

    Returns ``None`` for missing, unknown, revoked or expired keys; the caller
    decides how to report the failure.
    """
    if not raw_key:
        return None
    result = await session.execute(select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key)))
    api_key = result.scalar_one_or_none()
    if api_key is None or not is_key_usable(api_key):
        return None
    return CallerIdentity(user_id=api_key.user_id, org_id=api_key.org_id, api_key_id=api_key.id)
