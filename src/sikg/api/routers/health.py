"""Health check and metrics endpoints."""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from sikg.models import now_iso
from sikg.observability import generate_metrics

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok", "timestamp": now_iso()}


@router.get("/health/ready")
def health_ready(request: Request):
    """Readiness probe: the state database answers queries."""
    engine = request.app.state.engine
    try:
        engine.store.count()
    except sqlite3.Error as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "error": str(e), "timestamp": now_iso()},
        )
    return {"status": "ok", "graph": engine.graph.stats(), "timestamp": now_iso()}


@router.get("/health/live")
def health_live():
    return {"status": "ok"}


@router.get("/metrics")
def metrics():
    """Prometheus-compatible metrics endpoint."""
    return Response(content=generate_metrics(), media_type="text/plain; charset=utf-8")
