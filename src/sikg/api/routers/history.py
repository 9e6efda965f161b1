"""History endpoints: recalibration and statistics."""

from __future__ import annotations

from fastapi import APIRouter, Request

from sikg.api.schemas import RecalibrateBody
from sikg.graph import save_graph

router = APIRouter(tags=["history"])


@router.post("/history/recalibrate")
def history_recalibrate(request: Request, body: RecalibrateBody | None = None):
    engine = request.app.state.engine
    summary = engine.recalibrate()
    if body is not None and body.save_graph:
        summary["graph"] = str(save_graph(engine.graph, request.app.state.graph_path))
    return summary


@router.get("/history/stats")
def history_stats(request: Request):
    engine = request.app.state.engine
    engine.history.refresh()
    return engine.history.stats()
