from __future__ import annotations

import argparse
import asyncio
import sys

from incidentdesk.persistence.db import SessionLocal
from incidentdesk.persistence.repos import users as user_repo
from incidentdesk.services.audit import ACTION_CREATE, record_event
from incidentdesk.services.auth.api_keys import generate_api_key


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI arguments explicit to avoid issuing keys for the wrong user.
    parser = argparse.ArgumentParser(description="Create an API key for an existing user")
    parser.add_argument("--org", required=True, help="Organization id")
    parser.add_argument("--user-id", required=True, help="User id that owns the key")
    parser.add_argument("--name", required=True, help="Key label for auditing")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    key_id, raw_key, key_prefix, key_hash = generate_api_key()

    async with SessionLocal() as session:
        user = await user_repo.get_user_for_org(session, args.org, args.user_id)
        if user is None:
            raise ValueError("User not found in organization")
        if not user.is_active:
            raise ValueError("User is deactivated")
        await user_repo.create_api_key(
            session,
            key_id=key_id,
            user_id=user.id,
            org_id=user.org_id,
            key_prefix=key_prefix,
            key_hash=key_hash,
            name=args.name,
        )
        await session.commit()

        await record_event(
            org_id=user.org_id,
            user_id=user.id,
            action=ACTION_CREATE,
            resource_type="api_key",
            resource_id=key_id,
            details={"key_prefix": key_prefix, "key_name": args.name},
            best_effort=False,
        )

    print("API key created:")
    print(f"  key_id: {key_id}")
    print(f"  key_prefix: {key_prefix}")
    print("  api_key: ")
    print(f"    {raw_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
