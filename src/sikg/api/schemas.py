"""Pydantic request/response models for strict input validation."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from sikg.models import SemanticType, TestStatus


# ---------------------------------------------------------------------------
# Impact
# ---------------------------------------------------------------------------

class ChangeBody(BaseModel):
    node_id: str = Field(..., min_length=1)
    semantic_type: SemanticType = SemanticType.UNKNOWN
    initial_impact_score: float = Field(default=1.0, ge=0.0)
    change_details: dict[str, Any] = Field(default_factory=dict)


class ImpactBody(BaseModel):
    changes: list[ChangeBody]
    limit: int | None = Field(default=None, ge=1)
    use_rl: bool = True
    parallel: bool | None = None


class CategorizeBody(BaseModel):
    changes: list[ChangeBody]
    use_rl: bool = True


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

class ResultBody(BaseModel):
    test_id: str = Field(..., min_length=1)
    status: TestStatus
    timestamp: str | None = None
    execution_time_ms: float = Field(default=0.0, ge=0.0)
    commit_hash: str | None = None
    predicted_impact: float | None = Field(default=None, ge=0.0, le=1.0)
    changed_node_ids: list[str] = Field(default_factory=list)
    change_types: dict[str, str] = Field(default_factory=dict)
    error_message: str | None = None

    model_config = {"extra": "allow"}


class FeedbackBody(BaseModel):
    results: list[ResultBody] = Field(..., min_length=1)
    session_id: str | None = None
    changes: list[ChangeBody] | None = None
    save_graph: bool = False


class RecalibrateBody(BaseModel):
    save_graph: bool = False
