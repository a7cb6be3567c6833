# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Archon REST API Server

Exposes the versioning and pipeline handlers as ``POST /functions/<name>``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..core.audit import AuditLog
from ..core.config import ArchonConfig, get_config
from ..core.exceptions import ArchonError, format_error_envelope
from ..core.pipeline import PipelineRunner
from ..core.versioning import VersionManager
from ..store import EntityStore, create_store
from .deps import trace_id_of
from .routes import api_router
from .schemas import HealthResponse

logger = logging.getLogger("archon.server")


def create_app(
    store: Optional[EntityStore] = None, config: Optional[ArchonConfig] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        store: Entity store to use (built from config when omitted)
        config: Configuration (global config when omitted)
    """
    config = config or get_config()
    owns_store = store is None
    store = store or create_store(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting Archon API ({store.name} store)")
        yield
        if owns_store:
            await store.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Archon API Server",
        description="Workflow versioning and CI pipeline handlers",
        version=__version__,
        lifespan=lifespan,
    )

    audit = AuditLog(store)
    app.state.config = config
    app.state.store = store
    app.state.versions = VersionManager(
        store, audit=audit, rollback_roles=config.server.rollback_roles
    )
    app.state.pipelines = PipelineRunner(store, audit=audit, config=config.pipeline)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        trace_id = trace_id_of(request)
        response = await call_next(request)
        response.headers["X-Trace-Id"] = trace_id
        return response

    # =========================================================================
    # Error handlers
    # =========================================================================

    def error_response(request: Request, status_code: int, envelope: dict) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content=envelope,
            headers={"X-Trace-Id": envelope["trace_id"]},
        )

    @app.exception_handler(ArchonError)
    async def archon_error_handler(request: Request, exc: ArchonError):
        trace_id = trace_id_of(request)
        if exc.status_code >= 500:
            logger.error(f"[{trace_id}] {exc}")
        else:
            logger.info(f"[{trace_id}] {exc.code}: {exc.message}")
        return error_response(
            request, exc.status_code, format_error_envelope(exc, trace_id, config.server.debug)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        trace_id = trace_id_of(request)
        envelope = {
            "code": "VALIDATION_ERROR",
            "message": "Invalid request body",
            "retryable": False,
            "trace_id": trace_id,
            "details": {
                "errors": [
                    {"loc": [str(p) for p in err["loc"]], "msg": err["msg"]}
                    for err in exc.errors()
                ]
            },
        }
        return error_response(request, 422, envelope)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        trace_id = trace_id_of(request)
        logger.error(f"[{trace_id}] Unhandled exception: {exc}", exc_info=True)
        return error_response(
            request, 500, format_error_envelope(exc, trace_id, config.server.debug)
        )

    # =========================================================================
    # Routes
    # =========================================================================

    app.include_router(api_router, prefix="/functions")

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check():
        """Health check endpoint"""
        return HealthResponse(status="healthy", version=__version__, store=store.name)

    return app
