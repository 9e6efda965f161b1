"""Co-change detection: files that change together in the same commits."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from sikg.graph.store import GraphStore
from sikg.ids import normalize_path
from sikg.models import CommitRecord, Edge, RelationKind


COCHANGE_ORIGIN = "cochange"


def is_cochange_edge(edge: Edge) -> bool:
    """True for an edge that exists only because its files change together."""
    return edge.properties.get("origin") == COCHANGE_ORIGIN


def _pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a <= b else (b, a)


@dataclass
class CoChangeStats:
    commits: int = 0
    file_changes: Counter[str] = field(default_factory=Counter)
    pair_counts: Counter[tuple[str, str]] = field(default_factory=Counter)

    def count(self, a: str, b: str) -> int:
        return self.pair_counts.get(_pair(a, b), 0)

    def conditional(self, a: str, b: str) -> float:
        """P(b changes | a changes)."""
        changes = self.file_changes.get(a, 0)
        if not changes:
            return 0.0
        return self.count(a, b) / changes

    def jaccard(self, a: str, b: str) -> float:
        joint = self.count(a, b)
        union = self.file_changes.get(a, 0) + self.file_changes.get(b, 0) - joint
        return joint / union if union else 0.0

    def pairs(self, min_count: int = 1) -> Iterator[tuple[str, str, int]]:
        for (a, b), c in self.pair_counts.most_common():
            if c >= min_count:
                yield a, b, c

    def to_dict(self, top: int = 20) -> dict:
        return {
            "commits": self.commits,
            "files": len(self.file_changes),
            "pairs": len(self.pair_counts),
            "top_pairs": [
                {"file_a": a, "file_b": b, "co_changes": c}
                for (a, b), c in self.pair_counts.most_common(top)
            ],
        }


def compute_cochange(commits: Iterable[CommitRecord], root: str | None = None) -> CoChangeStats:
    stats = CoChangeStats()
    for commit in commits:
        files = sorted({normalize_path(f, root) for f in commit.files if f})
        if not files:
            continue
        stats.commits += 1
        for f in files:
            stats.file_changes[f] += 1
        for i, f1 in enumerate(files):
            for f2 in files[i + 1:]:
                stats.pair_counts[(f1, f2)] += 1
    return stats


def cochange_edges(
    stats: CoChangeStats,
    graph: GraphStore,
    min_count: int,
    min_frequency: float,
    scale: float,
) -> list[Edge]:
    """DEPENDS_ON edges between file anchors for strongly coupled file pairs.

    Direction follows the conditional probability: ``a -> b`` when b tends to
    change whenever a changes.
    """
    edges: list[Edge] = []
    for a, b, count in stats.pairs(min_count):
        anchor_a, anchor_b = graph.file_anchor(a), graph.file_anchor(b)
        if anchor_a is None or anchor_b is None or anchor_a.id == anchor_b.id:
            continue
        for src, dst, s_file, t_file in ((anchor_a, anchor_b, a, b), (anchor_b, anchor_a, b, a)):
            probability = stats.conditional(s_file, t_file)
            if probability < min_frequency:
                continue
            edges.append(Edge(
                source=src.id,
                target=dst.id,
                type=RelationKind.DEPENDS_ON,
                weight=round(min(1.0, probability * scale), 4),
                properties={"origin": COCHANGE_ORIGIN, "co_changes": count},
            ))
    return edges
