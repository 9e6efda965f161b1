"""Impact analysis endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from sikg.api.schemas import CategorizeBody, ImpactBody
from sikg.models import SemanticChange

router = APIRouter(tags=["impact"])


@router.post("/impact")
def impact(request: Request, body: ImpactBody):
    engine = request.app.state.engine
    changes = [SemanticChange.from_dict(c.model_dump(mode="json")) for c in body.changes]
    run = engine.prioritize(changes, body.limit, use_rl=body.use_rl, parallel=body.parallel)
    return {
        "change_count": len(changes),
        "session_id": run.session_id,
        "rl_fallback": run.rl_fallback,
        "tests": [t.to_dict() for t in run.impacts],
    }


@router.post("/impact/categorize")
def impact_categorize(request: Request, body: CategorizeBody):
    engine = request.app.state.engine
    changes = [SemanticChange.from_dict(c.model_dump(mode="json")) for c in body.changes]
    run, buckets = engine.categorize(changes, use_rl=body.use_rl)
    return {
        "session_id": run.session_id,
        "rl_fallback": run.rl_fallback,
        "counts": {name: len(tests) for name, tests in buckets.items()},
        **{name: [t.to_dict() for t in tests] for name, tests in buckets.items()},
    }
