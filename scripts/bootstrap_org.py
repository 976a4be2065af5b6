from __future__ import annotations

import argparse
import asyncio
import sys

from incidentdesk.persistence.db import SessionLocal
from incidentdesk.persistence.repos import users as user_repo
from incidentdesk.services.auth.api_keys import generate_api_key
from incidentdesk.services.tenant import bootstrap_organization


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create a free-plan organization, its first admin and an admin API key"
    )
    parser.add_argument("--email", required=True, help="Admin e-mail address")
    parser.add_argument("--name", default=None, help="Admin display name")
    return parser


async def _bootstrap(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        org, user = await bootstrap_organization(session, email=args.email, name=args.name)
        key_id, raw_key, key_prefix, key_hash = generate_api_key()
        await user_repo.create_api_key(
            session,
            key_id=key_id,
            user_id=user.id,
            org_id=org.id,
            key_prefix=key_prefix,
            key_hash=key_hash,
            name="bootstrap",
        )
        await session.commit()

    print("Organization created:")
    print(f"  org_id: {org.id}")
    print(f"  admin_user_id: {user.id}")
    print(f"  api_key: {raw_key}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_bootstrap(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"bootstrap_org failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
