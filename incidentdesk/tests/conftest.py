from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any incidentdesk module binds it.
_DB_DIR = tempfile.mkdtemp(prefix="incidentdesk-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}")
os.environ.setdefault("AUTH_CACHE_TTL_S", "0")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")

import pytest

from incidentdesk.apps.api.deps import clear_auth_cache
from incidentdesk.core.config import get_settings
from incidentdesk.domain.models import Base
from incidentdesk.persistence.db import engine


@pytest.fixture(autouse=True)
def reset_caches() -> None:
    # Settings and cached identities must not leak between tests that patch env vars.
    get_settings.cache_clear()
    clear_auth_cache()
    yield
    get_settings.cache_clear()
    clear_auth_cache()


@pytest.fixture
async def db_schema() -> None:
    # Fresh schema per test; dispose the engine so no connection outlives its event loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
