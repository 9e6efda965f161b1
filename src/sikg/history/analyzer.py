"""Historical weight subsystem: ingestion, boost lookup and recalibration.

Commit and test-result records are append-only.  ``refresh`` rebuilds the
co-change statistics and the fault table from the records inside the
configured window; evidence older than the window simply stops counting.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from sikg import defaults, feature_flags, scm
from sikg.config import SikgConfig
from sikg.graph.store import GraphStore
from sikg.history.cochange import CoChangeStats, cochange_edges, compute_cochange, is_cochange_edge
from sikg.history.faults import FaultStats, correlate_faults
from sikg.history.weights import EdgeEvidence, empirical_weight
from sikg.models import CommitRecord, Edge, RelationKind, SemanticType, TestResult
from sikg.ports import HistoryStorePort

log = logging.getLogger("sikg.history")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryAnalyzer:
    def __init__(
        self,
        store: HistoryStorePort,
        config: SikgConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.config = config
        self.clock = clock
        self._cochange = CoChangeStats()
        self._faults: dict[tuple[str, str], FaultStats] = {}
        self._refreshed_at: datetime | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_commits(self, commits: Iterable[CommitRecord]) -> int:
        added = self.store.add_commits(list(commits))
        if added:
            self._refreshed_at = None
        return added

    def ingest_git(
        self,
        repo: str | Path | None = None,
        max_commits: int = defaults.DEFAULT_MAX_COMMITS,
    ) -> int:
        commits = scm.log_entries(
            max_commits=max_commits,
            since_days=self.config.historical_window_days,
            cwd=repo,
        )
        added = self.ingest_commits(commits)
        log.info("Ingested %d new commits (%d read from git)", added, len(commits))
        return added

    def record_test_results(self, results: Iterable[TestResult]) -> int:
        added = self.store.add_test_results(list(results))
        if added:
            self._refreshed_at = None
        return added

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def window_start(self, now: datetime | None = None) -> datetime:
        return (now or self.clock()) - timedelta(days=self.config.historical_window_days)

    def refresh(self) -> dict[str, int]:
        """Rebuild co-change and fault tables from records inside the window."""
        now = self.clock()
        since = self.window_start(now).isoformat()
        commits = self.store.list_commits(since=since, limit=defaults.QUERY_LIMIT_LARGE)
        results = self.store.list_test_results(since=since, limit=defaults.QUERY_LIMIT_LARGE)
        cochange = compute_cochange(commits, self.config.workspace_root)
        faults = correlate_faults(results, now, self.config.fault_half_life_days)
        with self._lock:
            self._cochange = cochange
            self._faults = faults
            self._refreshed_at = now
        log.debug("History refreshed: %d commits, %d results", len(commits), len(results))
        return {"commits_analyzed": len(commits), "results_analyzed": len(results)}

    def _ensure_fresh(self) -> None:
        if self._refreshed_at is None:
            self.refresh()

    @property
    def cochange(self) -> CoChangeStats:
        self._ensure_fresh()
        return self._cochange

    def fault_stats(self, change_node_id: str, test_id: str) -> FaultStats | None:
        self._ensure_fresh()
        return self._faults.get((change_node_id, test_id))

    # ------------------------------------------------------------------
    # Boost
    # ------------------------------------------------------------------

    def historical_boost(
        self,
        change_node_id: str,
        semantic_type: SemanticType | str,
        target_id: str,
    ) -> float:
        """Additive boost in ``[0, max_historical_boost]`` for a propagation hop.

        Zero without recorded failures for the ``(change, target)`` pair;
        halved when none of those failures followed the same kind of change.
        """
        stats = self.fault_stats(change_node_id, target_id)
        if stats is None or stats.occurrences == 0:
            return 0.0
        strength = min(1.0, 0.5 * stats.frequency + 0.5 * min(1.0, stats.recency_weight))
        boost = self.config.max_historical_boost * strength
        stype = semantic_type.value if isinstance(semantic_type, SemanticType) else semantic_type
        if stype not in stats.semantic_types:
            boost *= defaults.MISMATCHED_TYPE_BOOST_FACTOR
        return boost

    # ------------------------------------------------------------------
    # Recalibration
    # ------------------------------------------------------------------

    def edge_evidence(self, graph: GraphStore, source: str, target: str) -> EdgeEvidence:
        evidence = EdgeEvidence()
        src, dst = graph.get_node(source), graph.get_node(target)
        if src is None or dst is None:
            return evidence

        stats = self.cochange
        if src.file_path and dst.file_path and src.file_path != dst.file_path:
            samples = stats.file_changes.get(src.file_path, 0)
            if samples:
                evidence.cochange_probability = stats.conditional(src.file_path, dst.file_path)
                evidence.jaccard = stats.jaccard(src.file_path, dst.file_path)
                evidence.samples += samples

        if dst.is_test:
            fault = self.fault_stats(source, target)
            if fault is not None:
                evidence.fault_correlation = fault.frequency
                evidence.samples += fault.runs
        return evidence

    def recalibrate(self, graph: GraphStore, add_cochange_edges: bool = True) -> dict[str, Any]:
        """Recompute every edge's calibrated weight from its base weight.

        Co-change coupling is recomputed from the current window on every
        call and never written into an edge's base weight.  An edge that
        exists only because of co-change falls to zero once the window no
        longer supports it; a structural DEPENDS_ON edge returns to its
        structural base.  With an empty window nothing changes.  Returns a
        summary.
        """
        summary: dict[str, Any] = self.refresh()
        summary.update({"edges_processed": 0, "edges_changed": 0, "cochange_edges": 0})
        if summary["commits_analyzed"] == 0 and summary["results_analyzed"] == 0:
            log.info("No history inside the %d-day window; skipping recalibration",
                     self.config.historical_window_days)
            return summary

        support: dict[tuple[str, str], float] = {}
        if feature_flags.is_enabled("cochange_edges"):
            for edge in cochange_edges(
                self._cochange, graph,
                self.config.min_cochange_count,
                self.config.min_cochange_frequency,
                self.config.cochange_edge_scale,
            ):
                support[(edge.source, edge.target)] = edge.weight
                existing = graph.get_edge(edge.source, edge.target, edge.type)
                if existing is None and not add_cochange_edges:
                    continue
                if existing is None or is_cochange_edge(existing):
                    graph.upsert_edge(replace(edge, weight=0.0))
                summary["cochange_edges"] += 1

        for edge in graph.edges():
            summary["edges_processed"] += 1
            weight = self._calibrated_weight(graph, edge, support)
            if weight != edge.calibrated_weight:
                graph.set_calibrated_weight(edge.source, edge.target, edge.type, weight)
                summary["edges_changed"] += 1

        log.info(
            "Recalibrated %d/%d edges (%d co-change edges)",
            summary["edges_changed"], summary["edges_processed"], summary["cochange_edges"],
        )
        return summary

    def _calibrated_weight(
        self, graph: GraphStore, edge: Edge, support: dict[tuple[str, str], float],
    ) -> float:
        base = edge.base_weight if edge.base_weight is not None else edge.weight
        coupled = support.get((edge.source, edge.target)) if edge.type == RelationKind.DEPENDS_ON else None
        if is_cochange_edge(edge):
            if coupled is None:
                return 0.0
            base = coupled
        elif coupled is not None:
            base = max(base, coupled)
        return empirical_weight(base, self.edge_evidence(graph, edge.source, edge.target))

    def stats(self) -> dict[str, Any]:
        self._ensure_fresh()
        return {
            "window_days": self.config.historical_window_days,
            "cochange": self._cochange.to_dict(),
            "fault_pairs": len(self._faults),
            "failing_pairs": sum(1 for s in self._faults.values() if s.occurrences),
            "refreshed_at": self._refreshed_at.isoformat() if self._refreshed_at else None,
        }
