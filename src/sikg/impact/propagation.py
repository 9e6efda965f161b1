"""Impact propagation: breadth-first scoring from changed nodes to test nodes.

Each change is traversed independently with its own visited set, so
different changes may reach the same node.  At every hop the score is
attenuated by depth and relation kind:

    attenuation = (1 / (depth + 1)) * multiplier(kind)
    propagated  = score * edge.weight * attenuation + boost(change, target)

Expansion stops at ``max_depth`` and a target is only enqueued when its
propagated score exceeds ``min_threshold``.  Test scores accumulate across
changes and are normalized by the maximum at the end.
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Sequence

from sikg import defaults
from sikg.graph.store import GraphStore
from sikg.models import ContributingChange, RelationKind, SemanticChange, SemanticType, TestImpact

log = logging.getLogger("sikg.propagation")

BoostFn = Callable[[SemanticChange, str], float]


def relation_multiplier(kind: RelationKind | str) -> float:
    key = kind.value if isinstance(kind, RelationKind) else str(kind)
    return defaults.RELATION_MULTIPLIERS.get(key, defaults.DEFAULT_RELATION_MULTIPLIER)


def attenuation(depth: int, kind: RelationKind | str) -> float:
    return (1.0 / (depth + 1)) * relation_multiplier(kind)


# ---------------------------------------------------------------------------
# Per-change traversal
# ---------------------------------------------------------------------------

@dataclass
class _TestHit:
    raw: float = 0.0
    contributions: dict[tuple[str, SemanticType], float] = field(default_factory=dict)

    def record(self, key: tuple[str, SemanticType], contribution: float) -> None:
        if contribution > self.contributions.get(key, float("-inf")):
            self.contributions[key] = contribution


def propagate_change(
    graph: GraphStore,
    change: SemanticChange,
    max_depth: int,
    min_threshold: float,
    boost: BoostFn | None = None,
) -> dict[str, _TestHit]:
    """Traverse from one change; return raw hits per test id in touch order."""
    hits: dict[str, _TestHit] = {}
    if graph.get_node(change.node_id) is None:
        log.debug("Change node %s not in graph, skipping", change.node_id)
        return hits

    key = (change.node_id, change.semantic_type)
    queue: deque[tuple[str, float, int]] = deque([(change.node_id, change.initial_impact_score, 0)])
    visited = {change.node_id}

    while queue:
        node_id, score, depth = queue.popleft()
        node = graph.get_node(node_id)
        if node is None:
            log.debug("Node %s vanished during traversal, skipping", node_id)
            continue

        if node.is_test:
            hit = hits.setdefault(node_id, _TestHit())
            hit.raw += score
            hit.record(key, score / (depth + 1))

        if depth >= max_depth:
            continue

        for edge in graph.get_outgoing_edges(node_id):
            if edge.target in visited:
                continue
            propagated = score * edge.weight * attenuation(depth, edge.type)
            if boost is not None:
                propagated += boost(change, edge.target)
            if propagated > min_threshold:
                visited.add(edge.target)
                queue.append((edge.target, propagated, depth + 1))

    return hits


# ---------------------------------------------------------------------------
# Merge and normalize
# ---------------------------------------------------------------------------

def _merge(partials: Sequence[dict[str, _TestHit]]) -> dict[str, _TestHit]:
    merged: dict[str, _TestHit] = {}
    for partial in partials:
        for test_id, hit in partial.items():
            acc = merged.setdefault(test_id, _TestHit())
            acc.raw += hit.raw
            for key, contribution in hit.contributions.items():
                acc.record(key, contribution)
    return merged


def normalize_scores(raw: dict[str, float]) -> dict[str, float]:
    """Divide by the maximum (no-op when it is 0 or 1) and round."""
    if not raw:
        return {}
    peak = max(raw.values())
    if peak == 0 or peak == 1:
        return {k: round(v, defaults.SCORE_DECIMALS) for k, v in raw.items()}
    return {k: round(v / peak, defaults.SCORE_DECIMALS) for k, v in raw.items()}


def _to_impacts(graph: GraphStore, merged: dict[str, _TestHit]) -> list[TestImpact]:
    scores = normalize_scores({tid: hit.raw for tid, hit in merged.items()})
    impacts: list[TestImpact] = []
    for test_id, hit in merged.items():
        node = graph.get_node(test_id)
        impacts.append(TestImpact(
            test_id=test_id,
            impact_score=scores[test_id],
            raw_score=hit.raw,
            test_name=node.name if node else test_id,
            test_path=node.file_path if node else "",
            contributing_changes=[
                ContributingChange(node_id=nid, semantic_type=stype, contribution=c)
                for (nid, stype), c in hit.contributions.items()
            ],
        ))
    return impacts


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

def calculate_impacts(
    graph: GraphStore,
    changes: Sequence[SemanticChange],
    max_depth: int = defaults.MAX_TRAVERSAL_DEPTH,
    min_threshold: float = defaults.MIN_IMPACT_THRESHOLD,
    boost: BoostFn | None = None,
) -> list[TestImpact]:
    """Propagate every change in order and return normalized test impacts."""
    partials = [propagate_change(graph, c, max_depth, min_threshold, boost) for c in changes]
    impacts = _to_impacts(graph, _merge(partials))
    log.debug("Propagated %d changes to %d tests", len(changes), len(impacts))
    return impacts


def propagate_parallel(
    graph: GraphStore,
    changes: Sequence[SemanticChange],
    max_depth: int = defaults.MAX_TRAVERSAL_DEPTH,
    min_threshold: float = defaults.MIN_IMPACT_THRESHOLD,
    boost: BoostFn | None = None,
    workers: int = defaults.PARALLEL_WORKERS,
) -> list[TestImpact]:
    """Same result as ``calculate_impacts`` with changes traversed on a thread pool.

    All workers read one snapshot; per-change results are merged in change
    order before normalizing, so the output matches the sequential path.
    """
    snap = graph.snapshot()
    with ThreadPoolExecutor(max_workers=workers) as pool:
        partials = list(pool.map(
            lambda c: propagate_change(snap, c, max_depth, min_threshold, boost), changes,
        ))
    return _to_impacts(snap, _merge(partials))
