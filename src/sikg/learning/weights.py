"""Learned edge factors: nudge edges on the paths that produced a bad prediction."""

from __future__ import annotations

import logging
from typing import Iterable

from sikg import defaults
from sikg.graph.store import GraphStore
from sikg.models import Edge

log = logging.getLogger("sikg.learning.weights")

_MAX_PATHS = 50


def find_paths(
    graph: GraphStore,
    source: str,
    target: str,
    max_length: int = defaults.MAX_PATH_LENGTH,
) -> list[list[Edge]]:
    """Simple paths of at most *max_length* edges from *source* to *target*."""
    paths: list[list[Edge]] = []
    stack: list[tuple[str, list[Edge], frozenset[str]]] = [(source, [], frozenset({source}))]
    while stack and len(paths) < _MAX_PATHS:
        node_id, path, seen = stack.pop()
        if len(path) >= max_length:
            continue
        for edge in graph.get_outgoing_edges(node_id):
            if edge.target in seen:
                continue
            extended = path + [edge]
            if edge.target == target:
                paths.append(extended)
            else:
                stack.append((edge.target, extended, seen | {edge.target}))
    return paths


def update_edge_factors(
    graph: GraphStore,
    change_node_ids: Iterable[str],
    test_id: str,
    error: float,
    learning_rate: float,
    max_length: int = defaults.MAX_PATH_LENGTH,
) -> int:
    """Scale learned factors on every path from the changes to *test_id*.

    ``error`` is predicted minus actual: over-prediction shrinks the factors,
    under-prediction grows them.  Edges closer to the change move more
    (contribution ``1 / position``).  Each edge is updated once per call.
    """
    contributions: dict[tuple[str, str, str], tuple[Edge, float]] = {}
    for change_id in change_node_ids:
        for path in find_paths(graph, change_id, test_id, max_length):
            for position, edge in enumerate(path, start=1):
                key = (edge.source, edge.target, edge.type.value)
                contribution = 1.0 / position
                if key not in contributions or contributions[key][1] < contribution:
                    contributions[key] = (edge, contribution)

    for edge, contribution in contributions.values():
        factor = edge.learned_factor * (1 - learning_rate * error * contribution)
        graph.set_learned_factor(edge.source, edge.target, edge.type, factor)
    if contributions:
        log.debug("Adjusted %d edge factors toward %s (error %.3f)", len(contributions), test_id, error)
    return len(contributions)
