from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from accessgate.apps.api.errors import (
    access_error_handler,
    http_exception_handler,
    scope_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from accessgate.apps.api.response import API_VERSION
from accessgate.apps.api.routes.audit import router as audit_router
from accessgate.apps.api.routes.comments import router as comments_router
from accessgate.apps.api.routes.health import router as health_router
from accessgate.apps.api.routes.projects import router as projects_router
from accessgate.apps.api.routes.tasks import router as tasks_router
from accessgate.core.config import Settings, get_settings
from accessgate.core.errors import AccessGateError
from accessgate.core.logging import configure_logging
from accessgate.persistence.db import Database
from accessgate.persistence.guards import ScopePredicateError


logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    resolved = settings or get_settings()
    configure_logging(resolved.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.database.dispose()

    app = FastAPI(title="AccessGate API", version=API_VERSION, lifespan=lifespan)
    # State is set eagerly so ASGI transports that skip lifespan still see it.
    app.state.settings = resolved
    app.state.database = database or Database.from_settings(resolved)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(AccessGateError, access_error_handler)
    app.add_exception_handler(ScopePredicateError, scope_predicate_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Role-scoped routers share the /{role} path segment checked by require_actor.
    app.include_router(projects_router, prefix=f"/{API_VERSION}")
    app.include_router(tasks_router, prefix=f"/{API_VERSION}")
    app.include_router(comments_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Inject bearer auth into every operation except the public health check.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="AccessGate API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        public_paths = {f"/{API_VERSION}/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app
