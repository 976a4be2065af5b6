from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from incidentdesk.apps.api.main import create_app
from incidentdesk.domain.models import AuditLogEntry
from incidentdesk.persistence.db import engine
from incidentdesk.tests.utils.fakes import FakeStripeClient, RecordingDispatcher


@pytest.fixture(autouse=True)
async def _schema(db_schema) -> None:
    # Every API test runs against a freshly created schema.
    yield


@pytest.fixture
async def audit_log_unavailable(_schema) -> None:
    # Every audit write fails once the table is gone; the rest of the schema stays intact.
    async with engine.begin() as conn:
        await conn.run_sync(AuditLogEntry.__table__.drop)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def stripe_client() -> FakeStripeClient:
    return FakeStripeClient()


@pytest.fixture
async def client(dispatcher: RecordingDispatcher, stripe_client: FakeStripeClient) -> AsyncClient:
    app = create_app(dispatcher=dispatcher, stripe_client=stripe_client)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
