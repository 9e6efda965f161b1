"""RL refinement session: adjust impact scores from policy, learn from outcomes.

``start_rl_test_session`` fails closed.  Any exception, a timeout or an open
circuit returns the propagation scores unchanged; the error is logged and
carried on the returned ``ImpactRun`` for the caller's audit trail.  A
session record is persisted only once refinement has completed, so a worker
that finishes after its timeout leaves nothing behind.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import replace
from typing import Any, Sequence

from sikg import defaults, observability
from sikg.config import SikgConfig
from sikg.graph.store import GraphStore
from sikg.learning.feedback import (
    INCONCLUSIVE,
    DefaultReward,
    FeedbackMetrics,
    RewardFunction,
    build_predictions,
    compute_metrics,
    learning_signals,
)
from sikg.learning.policy import PolicyState, PolicyStore, pair_key
from sikg.learning.weights import update_edge_factors
from sikg.models import ImpactRun, SemanticChange, TestImpact, TestResult, new_id, now_iso
from sikg.ports import PolicyStatePort
from sikg.resilience import CircuitBreaker, with_timeout

log = logging.getLogger("sikg.learning")

_INTEGRATION_MARKER = "integration"
_RISK_AVERSE_TOLERANCE = 0.5
_RISK_AVERSE_SCORE = 0.8
_RISK_AVERSE_BOOST = 1.1


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class RLSession:
    def __init__(
        self,
        policy: PolicyStore,
        config: SikgConfig,
        graph: GraphStore,
        backend: PolicyStatePort | None = None,
        reward: RewardFunction | None = None,
        rng: random.Random | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.policy = policy
        self.config = config
        self.graph = graph
        self.backend = backend
        self.reward = reward or DefaultReward()
        self.rng = rng or random.Random(config.rl_seed)
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=3, recovery_timeout=60.0, name="rl-refinement",
        )
        self._lock = threading.Lock()
        self._pending: dict[str, Any] | None = None
        self._guarded_refine = self.breaker(with_timeout(config.rl_timeout_seconds)(self._refine))

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def start_rl_test_session(
        self,
        changes: Sequence[SemanticChange],
        impacts: list[TestImpact],
    ) -> ImpactRun:
        try:
            refined, session = self._guarded_refine(list(changes), impacts)
            self._open_session(session)
        except Exception as e:
            observability.increment("rl_fallbacks")
            log.exception("RL refinement failed; returning propagation scores unchanged")
            return ImpactRun(impacts=impacts, rl_error=e)
        return ImpactRun(impacts=refined, session_id=session["session_id"])

    def _refine(
        self, changes: list[SemanticChange], impacts: list[TestImpact],
    ) -> tuple[list[TestImpact], dict[str, Any]]:
        # Runs on the timeout worker; it must not persist anything itself.
        state = self.policy.read()
        refined = [replace(t, impact_score=self._score(t, state)) for t in impacts]
        return refined, self._session_record(changes, impacts, refined, state)

    def _score(self, impact: TestImpact, state: PolicyState) -> float:
        params = state.parameters
        boost = 1.0
        for c in impact.contributing_changes:
            stype = c.semantic_type.value
            boost *= (
                1
                + params["priority_boost_factor"] * defaults.SEMANTIC_TYPE_BOOSTS.get(stype, 0.2)
                + state.type_adjustments.get(stype, 0.0)
            )
        if _INTEGRATION_MARKER in impact.test_path.lower():
            boost *= 1 + params["diversity_weight"] * 0.1
        if params["risk_tolerance"] < _RISK_AVERSE_TOLERANCE and impact.impact_score > _RISK_AVERSE_SCORE:
            boost *= _RISK_AVERSE_BOOST

        score = impact.impact_score * boost
        score += sum(
            state.pair_adjustments.get(pair_key(c.node_id, impact.test_id), 0.0)
            for c in impact.contributing_changes
        )
        if self.rng.random() < state.exploration_rate:
            mag = self.config.exploration_magnitude
            score += self.rng.uniform(-mag, mag)
        return round(_clamp(score, 0.0, 1.0), defaults.SCORE_DECIMALS)

    @staticmethod
    def _session_record(
        changes: list[SemanticChange],
        original: list[TestImpact],
        refined: list[TestImpact],
        state: PolicyState,
    ) -> dict[str, Any]:
        threshold = state.parameters["selection_threshold"]
        return {
            "session_id": new_id(),
            "created_at": now_iso(),
            "policy_version": state.version,
            "changes": [c.to_dict() for c in changes],
            "original": {t.test_id: t.impact_score for t in original},
            "predictions": {t.test_id: t.impact_score for t in refined},
            "selected": [t.test_id for t in refined if t.impact_score >= threshold],
        }

    def _open_session(self, session: dict[str, Any]) -> None:
        if self.backend is not None:
            self.backend.save_rl_session(session["session_id"], session, status="open")
        with self._lock:
            self._pending = session

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def load_session(self, session_id: str | None = None) -> dict[str, Any] | None:
        """The named session, else the most recent one still awaiting feedback."""
        if self.backend is not None:
            if session_id:
                return self.backend.get_rl_session(session_id)
            return self.backend.latest_rl_session(status="open")
        if session_id and self._pending and self._pending["session_id"] != session_id:
            return None
        return self._pending

    def process_feedback(
        self,
        results: Sequence[TestResult],
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Learn from executed test results and update policy and edge factors."""
        session = self.load_session(session_id) or {}
        predicted: dict[str, float] = session.get("predictions", {})
        session_changes = session.get("changes", [])
        default_nodes = [c["node_id"] for c in session_changes]
        default_types = {c["node_id"]: c["semantic_type"] for c in session_changes}

        threshold = self.policy.read().parameters["selection_threshold"]
        preds = build_predictions(results, predicted, threshold)
        metrics = compute_metrics(preds)
        reward = self.reward(metrics, preds)
        signals = learning_signals(metrics, preds, self.config.significance_threshold)

        adjusted_pairs = 0
        edge_updates: list[tuple[list[str], str, float]] = []
        with self.policy.session() as txn:
            s = txn.state
            lr = s.learning_rate
            lo, hi = defaults.ADJUSTMENT_BOUNDS
            for p, r in zip(preds, results):
                nodes = r.changed_node_ids or default_nodes
                types = set((r.change_types or default_types).values())
                if p.outcome >= defaults.OUTCOME_VALUES["failed"]:
                    s.pass_streaks.pop(p.test_id, None)
                    if p.predicted < self.config.low_impact_threshold:
                        delta = lr * (1 - p.predicted)
                        for nid in nodes:
                            k = pair_key(nid, p.test_id)
                            s.pair_adjustments[k] = _clamp(s.pair_adjustments.get(k, 0.0) + delta, lo, hi)
                            adjusted_pairs += 1
                        for t in types:
                            s.type_adjustments[t] = _clamp(s.type_adjustments.get(t, 0.0) + delta, lo, hi)
                elif (
                    p.outcome == defaults.OUTCOME_VALUES["passed"]
                    and p.predicted >= self.config.high_impact_threshold
                ):
                    streak = s.pass_streaks.get(p.test_id, 0) + 1
                    s.pass_streaks[p.test_id] = streak
                    if streak >= self.config.consistent_pass_runs:
                        delta = lr * p.predicted * 0.5
                        for nid in nodes:
                            k = pair_key(nid, p.test_id)
                            s.pair_adjustments[k] = _clamp(s.pair_adjustments.get(k, 0.0) - delta, lo, hi)
                            adjusted_pairs += 1
                if p.classification != INCONCLUSIVE and abs(p.error) > self.config.significance_threshold:
                    edge_updates.append((nodes, p.test_id, p.error))

            self._adapt(s, metrics, reward, signals)
            s.recent_metrics.append({
                "session_id": session.get("session_id"),
                "timestamp": now_iso(),
                "reward": round(reward, 4),
                **{k: round(v, 4) if isinstance(v, float) else v for k, v in metrics.to_dict().items()},
            })
            s.recent_metrics = s.recent_metrics[-defaults.RECENT_SESSIONS_KEPT:]
            txn.commit()
            learning_rate = s.learning_rate

        edges_updated = sum(
            update_edge_factors(self.graph, nodes, test_id, error, learning_rate)
            for nodes, test_id, error in edge_updates
        )

        if session.get("session_id") and self.backend is not None:
            self.backend.save_rl_session(session["session_id"], session, status="processed")
        with self._lock:
            if self._pending is not None and self._pending.get("session_id") == session.get("session_id"):
                self._pending = None

        observability.increment("feedback_sessions")
        log.info(
            "Processed feedback for %d results: reward=%.3f f1=%.3f",
            len(results), reward, metrics.f1_score,
        )
        return {
            "session_id": session.get("session_id"),
            "metrics": metrics.to_dict(),
            "reward": round(reward, 4),
            "signals": signals,
            "pair_adjustments": adjusted_pairs,
            "edges_updated": edges_updated,
        }

    def _adapt(
        self,
        s: PolicyState,
        metrics: FeedbackMetrics,
        reward: float,
        signals: list[dict[str, Any]],
    ) -> None:
        params = s.parameters
        step = params["adaptation_rate"] * 0.5
        threshold = params["selection_threshold"]
        failures = metrics.true_positives + metrics.false_negatives
        direction = next(
            (sig["direction"] for sig in signals if sig["type"] == "THRESHOLD_CHANGE"), None,
        )
        if direction == "INCREASE":
            threshold *= 1 + step
        elif direction == "DECREASE" or (metrics.f1_score < 0.6 and failures):
            threshold *= 1 - step
        params["selection_threshold"] = round(_clamp(threshold, *defaults.SELECTION_THRESHOLD_BOUNDS), 4)

        if failures and metrics.recall < 0.5:
            s.exploration_rate = min(defaults.MAX_EXPLORATION_RATE, s.exploration_rate * 1.1)
        elif metrics.precision > 0.9:
            s.exploration_rate = max(defaults.MIN_EXPLORATION_RATE, s.exploration_rate * 0.95)

        if s.sessions == 0:
            s.average_reward = reward
        else:
            s.average_reward += defaults.REWARD_EMA_ALPHA * (reward - s.average_reward)
        s.stability = round(1.0 - min(1.0, abs(reward - s.average_reward)), 4)
        s.sessions += 1

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        s = self.policy.read()
        recommendations: list[str] = []
        if s.sessions and s.average_reward < 0.3:
            recommendations.append("Average reward is low; consider a lower selection threshold")
        if s.stability < 0.5:
            recommendations.append("Policy is unstable; consider a lower learning rate")
        if s.exploration_rate >= defaults.MAX_EXPLORATION_RATE:
            recommendations.append("Exploration is at its ceiling; recall remains low")
        return {
            "enabled": self.config.rl_enabled,
            "circuit": self.breaker.state,
            "version": s.version,
            "sessions": s.sessions,
            "parameters": s.parameters,
            "learning_rate": s.learning_rate,
            "exploration_rate": s.exploration_rate,
            "average_reward": round(s.average_reward, 4),
            "stability": s.stability,
            "type_adjustments": s.type_adjustments,
            "pair_adjustments": len(s.pair_adjustments),
            "recent_metrics": s.recent_metrics[-5:],
            "recommendations": recommendations,
        }
