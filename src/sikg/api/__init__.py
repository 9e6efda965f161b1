"""FastAPI application factory for SIKG."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sikg import defaults
from sikg.adapters.sqlite_store import SqliteStore
from sikg.config import load_config
from sikg.engine import SikgEngine
from sikg.graph import load_graph
from sikg.observability import add_observability_middleware

from sikg.api.routers import (
    feedback,
    graph,
    health,
    history,
    impact,
    policy,
)

log = logging.getLogger("sikg.api")


def create_app(
    db_path: str | Path = "",
    graph_path: str | Path = "",
    config_path: str | Path | None = None,
    engine: SikgEngine | None = None,
) -> FastAPI:
    """Build and return a configured FastAPI application.

    A prebuilt *engine* replaces the one assembled from the paths.
    """
    app = FastAPI(
        title="SIKG",
        description="Semantic impact analysis for regression test selection and prioritization",
        version="0.1.0",
    )

    state_dir = Path(defaults.STATE_DIR)
    app.state.db_path = str(db_path) if db_path else os.environ.get(
        "SIKG_DB_PATH", str(state_dir / defaults.DEFAULT_DB_NAME),
    )
    app.state.graph_path = str(graph_path) if graph_path else os.environ.get(
        "SIKG_GRAPH_PATH", str(state_dir / defaults.DEFAULT_GRAPH_NAME),
    )
    if engine is None:
        config = load_config(config_path)
        engine = SikgEngine(
            config,
            load_graph(app.state.graph_path, config.workspace_root),
            SqliteStore(app.state.db_path),
        )
    app.state.engine = engine
    log.info("Engine ready: %s", engine.graph.stats())

    # ---------------------------------------------------------------
    # Exception handlers: {"error": "..."} bodies
    # ---------------------------------------------------------------

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = ".".join(str(part) for part in first.get("loc", []))
            msg = first.get("msg", "Invalid input")
            detail = f"{loc}: {msg}" if loc else msg
        else:
            detail = "Invalid JSON body"
        return JSONResponse(
            status_code=400,
            content={"error": detail},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"error": str(exc)},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        log.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc)},
        )

    add_observability_middleware(app)

    # ---------------------------------------------------------------
    # Routers: versioned API under /v1, probes at the root
    # ---------------------------------------------------------------

    api = APIRouter()
    api.include_router(impact.router)
    api.include_router(feedback.router)
    api.include_router(history.router)
    api.include_router(policy.router)
    api.include_router(graph.router)
    app.include_router(api, prefix="/v1")

    app.include_router(health.router)

    return app
