"""Test result feedback endpoint."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from sikg.api.schemas import FeedbackBody
from sikg.graph import save_graph
from sikg.models import SemanticChange, TestResult

router = APIRouter(tags=["feedback"])


@router.post("/feedback")
def feedback(request: Request, body: FeedbackBody):
    engine = request.app.state.engine
    if body.session_id and engine.rl.load_session(body.session_id) is None:
        raise HTTPException(status_code=404, detail=f"Session {body.session_id} not found")
    results = [TestResult.from_dict(r.model_dump(mode="json")) for r in body.results]
    changes = None
    if body.changes is not None:
        changes = [SemanticChange.from_dict(c.model_dump(mode="json")) for c in body.changes]
    summary = engine.update_with_test_results(results, session_id=body.session_id, changes=changes)
    if body.save_graph:
        summary["graph"] = str(save_graph(engine.graph, request.app.state.graph_path))
    return summary
