"""Test prioritizer: propagation, optional refinement, ranking and bucketing."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from sikg import feature_flags
from sikg.config import SikgConfig
from sikg.graph.store import GraphStore
from sikg.impact.propagation import BoostFn, calculate_impacts, propagate_parallel
from sikg.models import ImpactRun, SemanticChange, TestImpact

log = logging.getLogger("sikg.prioritizer")


class ImpactRefiner(Protocol):
    def start_rl_test_session(
        self, changes: Sequence[SemanticChange], impacts: list[TestImpact],
    ) -> ImpactRun: ...


class TestPrioritizer:
    __test__ = False

    def __init__(
        self,
        graph: GraphStore,
        config: SikgConfig,
        boost: BoostFn | None = None,
        refiner: ImpactRefiner | None = None,
    ) -> None:
        self.graph = graph
        self.config = config
        self.boost = boost
        self.refiner = refiner

    def calculate_test_impact(
        self,
        changes: Sequence[SemanticChange],
        *,
        use_rl: bool = True,
        parallel: bool | None = None,
    ) -> list[TestImpact]:
        return self.run(changes, use_rl=use_rl, parallel=parallel).impacts

    def run(
        self,
        changes: Sequence[SemanticChange],
        *,
        use_rl: bool = True,
        parallel: bool | None = None,
    ) -> ImpactRun:
        """Propagate *changes* over a snapshot, then refine when enabled.

        The refiner fails closed, so the propagation result is returned
        whenever refinement cannot complete.  Everything the caller needs to
        know about this run comes back on the result, never on shared state.
        """
        if parallel is None:
            parallel = feature_flags.is_enabled("parallel_propagation")
        snap = self.graph.snapshot()
        if parallel and len(changes) > 1:
            impacts = propagate_parallel(
                snap, changes,
                self.config.max_traversal_depth, self.config.min_impact_threshold,
                self.boost, workers=self.config.parallel_workers,
            )
        else:
            impacts = calculate_impacts(
                snap, changes,
                self.config.max_traversal_depth, self.config.min_impact_threshold,
                self.boost,
            )

        result = ImpactRun(impacts=impacts)
        if (
            use_rl
            and self.refiner is not None
            and self.config.rl_enabled
            and feature_flags.is_enabled("rl_refinement")
            and impacts
        ):
            result = self.refiner.start_rl_test_session(changes, impacts)

        log.info("Calculated impact for %d tests from %d changes", len(result.impacts), len(changes))
        return result

    @staticmethod
    def get_prioritized_tests(
        impacts: Sequence[TestImpact], limit: int | None = None,
    ) -> list[TestImpact]:
        """Descending by score; ties keep their original order."""
        ranked = sorted(impacts, key=lambda t: t.impact_score, reverse=True)
        if limit is not None and limit > 0:
            return ranked[:limit]
        return ranked

    def categorize_tests_by_impact(
        self, impacts: Sequence[TestImpact],
    ) -> dict[str, list[TestImpact]]:
        high, medium, low = [], [], []
        for t in self.get_prioritized_tests(impacts):
            if t.impact_score >= self.config.high_impact_threshold:
                high.append(t)
            elif t.impact_score < self.config.low_impact_threshold:
                low.append(t)
            else:
                medium.append(t)
        return {"high": high, "medium": medium, "low": low}
