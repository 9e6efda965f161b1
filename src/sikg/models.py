"""Core data types for SIKG."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class NodeType(str, Enum):
    CODE_ELEMENT = "CodeElement"
    TEST_CASE = "TestCase"


class RelationKind(str, Enum):
    CALLS = "CALLS"
    USES = "USES"
    INHERITS_FROM = "INHERITS_FROM"
    DEPENDS_ON = "DEPENDS_ON"
    BELONGS_TO = "BELONGS_TO"
    IMPORTS = "IMPORTS"
    TESTS = "TESTS"
    IS_TESTED_BY = "IS_TESTED_BY"
    MODIFIES = "MODIFIES"


class SemanticType(str, Enum):
    BUG_FIX = "BUG_FIX"
    FEATURE_ADDITION = "FEATURE_ADDITION"
    REFACTORING_SIGNATURE = "REFACTORING_SIGNATURE"
    REFACTORING_LOGIC = "REFACTORING_LOGIC"
    DEPENDENCY_UPDATE = "DEPENDENCY_UPDATE"
    PERFORMANCE_OPT = "PERFORMANCE_OPT"
    UNKNOWN = "UNKNOWN"


class TestStatus(str, Enum):
    __test__ = False  # not a pytest class

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Event type registry (single source of truth for all event type strings)
# ---------------------------------------------------------------------------

class EventType:
    IMPACT_CALCULATED = "impact.calculated"
    FEEDBACK_PROCESSED = "feedback.processed"
    WEIGHTS_RECALIBRATED = "weights.recalibrated"
    COMMITS_INGESTED = "history.commits_ingested"
    RL_FALLBACK = "rl.fallback"
    POLICY_RESET = "policy.reset"
    GRAPH_INGESTED = "graph.ingested"


# ---------------------------------------------------------------------------
# Graph elements
# ---------------------------------------------------------------------------

@dataclass
class Location:
    start_line: int
    start_col: int = 0
    end_line: int | None = None
    end_col: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_line": self.start_line,
            "start_col": self.start_col,
            "end_line": self.end_line if self.end_line is not None else self.start_line,
            "end_col": self.end_col if self.end_col is not None else self.start_col,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> Location | None:
        if not d:
            return None
        return cls(
            start_line=int(d.get("start_line", 0)),
            start_col=int(d.get("start_col", 0)),
            end_line=d.get("end_line"),
            end_col=d.get("end_col"),
        )


@dataclass
class Node:
    id: str
    type: NodeType
    name: str
    file_path: str = ""
    location: Location | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def is_test(self) -> bool:
        return self.type == NodeType.TEST_CASE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "file_path": self.file_path,
            "location": self.location.to_dict() if self.location else None,
            "properties": self.properties,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Node:
        if not d.get("id"):
            raise ValueError("Node requires an id")
        return cls(
            id=d["id"],
            type=NodeType(d.get("type", NodeType.CODE_ELEMENT.value)),
            name=d.get("name", d["id"]),
            file_path=d.get("file_path", ""),
            location=Location.from_dict(d.get("location")),
            properties=dict(d.get("properties", {})),
        )


@dataclass(frozen=True)
class Edge:
    """Immutable view of a directed, typed, weighted edge.

    ``weight`` is the effective weight used by propagation.  ``base_weight``
    is the structural weight supplied at ingestion, ``calibrated_weight`` the
    result of historical recalibration and ``learned_factor`` the multiplicative
    adjustment accumulated from test feedback.
    """

    source: str
    target: str
    type: RelationKind
    weight: float
    base_weight: float | None = None
    calibrated_weight: float | None = None
    learned_factor: float = 1.0
    properties: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.weight <= 1.0:
            raise ValueError(f"Edge weight must be in [0, 1], got {self.weight}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "type": self.type.value,
            "weight": self.weight,
            "base_weight": self.base_weight if self.base_weight is not None else self.weight,
            "calibrated_weight": (
                self.calibrated_weight if self.calibrated_weight is not None else self.weight
            ),
            "learned_factor": self.learned_factor,
            "properties": self.properties,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Edge:
        weight = float(d.get("weight", 1.0))
        return cls(
            source=d["source"],
            target=d["target"],
            type=RelationKind(d["type"]),
            weight=weight,
            base_weight=d.get("base_weight"),
            calibrated_weight=d.get("calibrated_weight"),
            learned_factor=float(d.get("learned_factor", 1.0)),
            properties=dict(d.get("properties", {})),
        )


# ---------------------------------------------------------------------------
# Changes and impacts
# ---------------------------------------------------------------------------

@dataclass
class SemanticChange:
    node_id: str
    semantic_type: SemanticType
    initial_impact_score: float
    change_details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.initial_impact_score < 0:
            raise ValueError(
                f"initial_impact_score must be non-negative, got {self.initial_impact_score}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "semantic_type": self.semantic_type.value,
            "initial_impact_score": self.initial_impact_score,
            "change_details": self.change_details,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SemanticChange:
        if not d.get("node_id"):
            raise ValueError("SemanticChange requires a node_id")
        return cls(
            node_id=d["node_id"],
            semantic_type=SemanticType(d.get("semantic_type", SemanticType.UNKNOWN.value)),
            initial_impact_score=float(d.get("initial_impact_score", 1.0)),
            change_details=dict(d.get("change_details", {})),
        )


@dataclass
class ContributingChange:
    node_id: str
    semantic_type: SemanticType
    contribution: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "semantic_type": self.semantic_type.value,
            "contribution": self.contribution,
        }


@dataclass
class TestImpact:
    __test__ = False

    test_id: str
    impact_score: float
    raw_score: float = 0.0
    test_name: str = ""
    test_path: str = ""
    contributing_changes: list[ContributingChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_id": self.test_id,
            "impact_score": self.impact_score,
            "raw_score": self.raw_score,
            "test_name": self.test_name,
            "test_path": self.test_path,
            "contributing_changes": [c.to_dict() for c in self.contributing_changes],
        }


@dataclass
class ImpactRun:
    """Outcome of one impact calculation.

    ``session_id`` names the refinement session this run opened, if any.
    ``rl_error`` is set when refinement failed and ``impacts`` are the
    unrefined propagation scores.
    """

    impacts: list[TestImpact]
    session_id: str | None = None
    rl_error: Exception | None = None

    @property
    def rl_fallback(self) -> bool:
        return self.rl_error is not None


# ---------------------------------------------------------------------------
# History records
# ---------------------------------------------------------------------------

@dataclass
class TestResult:
    __test__ = False

    test_id: str
    status: TestStatus
    timestamp: str = field(default_factory=now_iso)
    execution_time_ms: float = 0.0
    commit_hash: str | None = None
    predicted_impact: float | None = None
    changed_node_ids: list[str] = field(default_factory=list)
    change_types: dict[str, str] = field(default_factory=dict)  # node id -> semantic type
    error_message: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == TestStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_id": self.test_id,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "execution_time_ms": self.execution_time_ms,
            "commit_hash": self.commit_hash,
            "predicted_impact": self.predicted_impact,
            "changed_node_ids": self.changed_node_ids,
            "change_types": self.change_types,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TestResult:
        if not d.get("test_id"):
            raise ValueError("TestResult requires a test_id")
        predicted = d.get("predicted_impact")
        return cls(
            test_id=d["test_id"],
            status=TestStatus(d.get("status", "")),
            timestamp=d.get("timestamp") or now_iso(),
            execution_time_ms=float(d.get("execution_time_ms", 0.0)),
            commit_hash=d.get("commit_hash"),
            predicted_impact=float(predicted) if predicted is not None else None,
            changed_node_ids=list(d.get("changed_node_ids", [])),
            change_types=dict(d.get("change_types", {})),
            error_message=d.get("error_message"),
        )


@dataclass
class CommitRecord:
    hash: str
    timestamp: str
    author: str = ""
    message: str = ""
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "timestamp": self.timestamp,
            "author": self.author,
            "message": self.message,
            "files": self.files,
        }


# ---------------------------------------------------------------------------
# Event (the audit record)
# ---------------------------------------------------------------------------

@dataclass
class Event:
    event_type: str
    payload: dict[str, Any]
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "event_type": self.event_type,
            "payload": self.payload,
        }
