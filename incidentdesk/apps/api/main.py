from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from incidentdesk.apps.api.errors import (
    incidentdesk_error_handler,
    org_predicate_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from incidentdesk.apps.api.response import API_VERSION
from incidentdesk.apps.api.routes.audit import router as audit_router
from incidentdesk.apps.api.routes.billing import router as billing_router
from incidentdesk.apps.api.routes.dashboard import router as dashboard_router
from incidentdesk.apps.api.routes.health import router as health_router
from incidentdesk.apps.api.routes.incidents import router as incidents_router
from incidentdesk.apps.api.routes.orgs import router as orgs_router
from incidentdesk.apps.api.routes.users import router as users_router
from incidentdesk.apps.api.routes.webhooks import router as webhooks_router
from incidentdesk.core.config import get_settings
from incidentdesk.core.errors import IncidentDeskError
from incidentdesk.core.logging import configure_logging
from incidentdesk.persistence.guards import OrgPredicateError
from incidentdesk.services.billing.stripe_client import StripeClient
from incidentdesk.services.notifications import NotificationDispatcher


def create_app(
    *,
    dispatcher: NotificationDispatcher | None = None,
    stripe_client: StripeClient | None = None,
) -> FastAPI:
    configure_logging()
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.dispatcher.aclose()

    app = FastAPI(title="incidentdesk API", lifespan=lifespan)
    # Outbound collaborators are built once per app and injected into routes.
    app.state.dispatcher = dispatcher or NotificationDispatcher()
    app.state.stripe_client = stripe_client or StripeClient()
    app.state.settings = settings

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(IncidentDeskError, incidentdesk_error_handler)
    app.add_exception_handler(OrgPredicateError, org_predicate_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (
        health_router,
        orgs_router,
        users_router,
        incidents_router,
        dashboard_router,
        audit_router,
        billing_router,
        webhooks_router,
    ):
        app.include_router(router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Advertise bearer auth on every route except the unauthenticated ones.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="incidentdesk API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        public_paths = {"/v1/health", "/v1/webhooks/stripe"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]
    return app


app = create_app()
