from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone

from sqlalchemy import select

from incidentdesk.domain.models import ApiKey
from incidentdesk.persistence.db import SessionLocal
from incidentdesk.services.audit import record_event


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Revoke incidentdesk API keys")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--key-id", help="Revoke a single key")
    target.add_argument("--user-id", help="Revoke every active key issued to this user")
    parser.add_argument("--reason", default=None, help="Free-text reason stored in the audit log")
    return parser


async def _revoke(*, key_id: str | None, user_id: str | None, reason: str | None) -> int:
    stmt = select(ApiKey).where(ApiKey.revoked_at.is_(None))
    stmt = stmt.where(ApiKey.id == key_id) if key_id else stmt.where(ApiKey.user_id == user_id)
    async with SessionLocal() as session:
        keys = list((await session.execute(stmt)).scalars().all())
        if not keys:
            raise ValueError("No active API key matched")
        revoked_at = datetime.now(timezone.utc)
        for api_key in keys:
            api_key.revoked_at = revoked_at
        await session.commit()

    # Keys stay in place so past requests remain attributable.
    for api_key in keys:
        await record_event(
            org_id=api_key.org_id,
            user_id=api_key.user_id,
            action="revoke",
            resource_type="api_key",
            resource_id=api_key.id,
            details={"key_prefix": api_key.key_prefix, "reason": reason},
            occurred_at=revoked_at,
            best_effort=False,
        )
        print(f"revoked {api_key.id} ({api_key.key_prefix}...)")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_revoke(key_id=args.key_id, user_id=args.user_id, reason=args.reason))
    except Exception as exc:  # noqa: BLE001
        print(f"revoke_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
