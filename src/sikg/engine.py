"""Composition root: one engine instance wires graph, history, policy and prioritizer.

Built once by the caller (CLI command, API factory, test) and passed down.
Nothing in the package holds module-level engine state.
"""

from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Sequence

from sikg import defaults, feature_flags, observability
from sikg.config import SikgConfig
from sikg.graph.store import GraphStore
from sikg.history.analyzer import HistoryAnalyzer, _utcnow
from sikg.impact.prioritizer import TestPrioritizer
from sikg.learning.feedback import RewardFunction
from sikg.learning.policy import PolicyStore
from sikg.learning.session import RLSession
from sikg.models import Event, EventType, ImpactRun, SemanticChange, TestImpact, TestResult
from sikg.parsers import ParserRegistry, default_registry
from sikg.ports import SikgStore

log = logging.getLogger("sikg.engine")

_TOP_TESTS_IN_EVENT = 10


class SikgEngine:
    def __init__(
        self,
        config: SikgConfig,
        graph: GraphStore,
        store: SikgStore,
        *,
        reward: RewardFunction | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
        parsers: ParserRegistry | None = None,
    ) -> None:
        self.config = config
        self.graph = graph
        self.store = store
        self.parsers = parsers or default_registry(config.workspace_root)
        self.history = HistoryAnalyzer(store, config, clock)
        self.policy = PolicyStore(config, store)
        self.rl = RLSession(self.policy, config, graph, store, reward=reward, rng=rng)
        self.prioritizer = TestPrioritizer(graph, config, boost=self._boost, refiner=self.rl)

    def _boost(self, change: SemanticChange, target_id: str) -> float:
        if not feature_flags.is_enabled("historical_boost"):
            return 0.0
        return self.history.historical_boost(change.node_id, change.semantic_type, target_id)

    def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self.store.append(Event(event_type=event_type, payload=payload))

    # ------------------------------------------------------------------
    # Impact
    # ------------------------------------------------------------------

    def run_impact(
        self,
        changes: Sequence[SemanticChange],
        *,
        use_rl: bool = True,
        parallel: bool | None = None,
    ) -> ImpactRun:
        run = self.prioritizer.run(changes, use_rl=use_rl, parallel=parallel)
        if run.rl_error is not None:
            self._emit(EventType.RL_FALLBACK, {
                "error": f"{type(run.rl_error).__name__}: {run.rl_error}",
                "change_count": len(changes),
            })
        ranked = self.prioritizer.get_prioritized_tests(run.impacts, _TOP_TESTS_IN_EVENT)
        self._emit(EventType.IMPACT_CALCULATED, {
            "change_count": len(changes),
            "test_count": len(run.impacts),
            "session_id": run.session_id,
            "top": [{"test_id": t.test_id, "impact_score": t.impact_score} for t in ranked],
        })
        observability.increment("impact_runs")
        log.info("Impact calculated", extra={"change_count": len(changes), "test_count": len(run.impacts)})
        return run

    def calculate_test_impact(
        self,
        changes: Sequence[SemanticChange],
        *,
        use_rl: bool = True,
        parallel: bool | None = None,
    ) -> list[TestImpact]:
        return self.run_impact(changes, use_rl=use_rl, parallel=parallel).impacts

    def prioritize(
        self,
        changes: Sequence[SemanticChange],
        limit: int | None = None,
        *,
        use_rl: bool = True,
        parallel: bool | None = None,
    ) -> ImpactRun:
        """One impact run with its tests ranked and cut to *limit*."""
        run = self.run_impact(changes, use_rl=use_rl, parallel=parallel)
        return replace(run, impacts=self.prioritizer.get_prioritized_tests(run.impacts, limit))

    def categorize(
        self,
        changes: Sequence[SemanticChange],
        *,
        use_rl: bool = True,
    ) -> tuple[ImpactRun, dict[str, list[TestImpact]]]:
        run = self.run_impact(changes, use_rl=use_rl)
        return run, self.prioritizer.categorize_tests_by_impact(run.impacts)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def update_with_test_results(
        self,
        results: Sequence[TestResult],
        *,
        session_id: str | None = None,
        changes: Sequence[SemanticChange] | None = None,
    ) -> dict[str, Any]:
        """Record results in history, learn from them and refresh test run history.

        Results that do not name the changes they ran after inherit them from
        *changes*, else from the refinement session being answered.
        """
        session = self.rl.load_session(session_id) or {}
        if changes is not None:
            change_dicts = [c.to_dict() for c in changes]
        else:
            change_dicts = session.get("changes", [])
        predictions: dict[str, float] = session.get("predictions", {})
        filled = [self._fill_result(r, change_dicts, predictions) for r in results]

        recorded = self.history.record_test_results(filled)
        feedback: dict[str, Any] | None = None
        if self.config.rl_enabled and feature_flags.is_enabled("rl_refinement"):
            feedback = self.rl.process_feedback(filled, session.get("session_id"))
        self._update_run_history(filled)

        summary = {
            "results_recorded": recorded,
            "failed": sum(1 for r in filled if r.failed),
            "feedback": feedback,
        }
        self._emit(EventType.FEEDBACK_PROCESSED, {
            "results_recorded": recorded,
            "failed": summary["failed"],
            "session_id": session.get("session_id"),
            "reward": feedback["reward"] if feedback else None,
        })
        return summary

    @staticmethod
    def _fill_result(
        result: TestResult,
        change_dicts: list[dict[str, Any]],
        predictions: dict[str, float],
    ) -> TestResult:
        updates: dict[str, Any] = {}
        if not result.changed_node_ids and change_dicts:
            updates["changed_node_ids"] = [c["node_id"] for c in change_dicts]
        if not result.change_types and change_dicts:
            updates["change_types"] = {c["node_id"]: c["semantic_type"] for c in change_dicts}
        if result.predicted_impact is None and result.test_id in predictions:
            updates["predicted_impact"] = predictions[result.test_id]
        return replace(result, **updates) if updates else result

    def _update_run_history(self, results: Sequence[TestResult]) -> None:
        for r in results:
            node = self.graph.get_node(r.test_id)
            if node is None or not node.is_test:
                continue
            runs = list(node.properties.get("run_history", []))
            runs.append({
                "status": r.status.value,
                "timestamp": r.timestamp,
                "execution_time_ms": r.execution_time_ms,
            })
            runs = runs[-defaults.TEST_RUN_HISTORY_LIMIT:]
            self.graph.set_node_properties(
                r.test_id,
                run_history=runs,
                last_status=r.status.value,
                failure_rate=round(sum(1 for x in runs if x["status"] == "failed") / len(runs), 4),
            )

    # ------------------------------------------------------------------
    # History and graph maintenance
    # ------------------------------------------------------------------

    def ingest_git(self, repo: str | Path | None = None, max_commits: int = defaults.DEFAULT_MAX_COMMITS) -> int:
        added = self.history.ingest_git(repo, max_commits)
        self._emit(EventType.COMMITS_INGESTED, {"added": added, "repo": str(repo or ".")})
        return added

    def recalibrate(self) -> dict[str, Any]:
        summary = self.history.recalibrate(self.graph)
        self._emit(EventType.WEIGHTS_RECALIBRATED, summary)
        return summary

    def ingest_files(self, paths: list[str | Path]) -> dict[str, Any]:
        summary = self.parsers.ingest(self.graph, paths)
        self._emit(EventType.GRAPH_INGESTED, {k: v for k, v in summary.items() if k != "skipped"})
        return summary

    def reset_policy(self) -> dict[str, Any]:
        state = self.policy.reset()
        self._emit(EventType.POLICY_RESET, {"version": state.version})
        return state.to_dict()

    def status(self) -> dict[str, Any]:
        return {
            "graph": self.graph.stats(),
            "history": self.history.stats(),
            "policy": self.rl.status(),
            "config": self.config.to_dict(),
            "flags": feature_flags.list_flags(),
        }
