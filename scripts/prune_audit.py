from __future__ import annotations

import argparse
import asyncio

from incidentdesk.core.logging import configure_logging
from incidentdesk.persistence.db import SessionLocal
from incidentdesk.services.maintenance import prune_audit_events


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delete audit log entries past retention")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Override AUDIT_RETENTION_DAYS for this run",
    )
    return parser


async def prune(retention_days: int | None) -> None:
    async with SessionLocal() as session:
        deleted = await prune_audit_events(session, retention_days=retention_days)
        print(f"pruned_audit_events={deleted}")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(prune(_build_parser().parse_args().retention_days))
