"""Tests for RL refinement: scoring, fail-closed behavior and feedback learning."""

import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import build_graph, change, edge, make_code, make_test
from sikg import observability
from sikg.config import SikgConfig
from sikg.impact import calculate_impacts
from sikg.learning import PolicyStore, RLSession
from sikg.models import RelationKind, SemanticType, TestResult, TestStatus
from sikg.resilience import CircuitBreaker, CircuitOpen, OperationTimeout


def fan():
    """A reaches T2 directly and T1 through B."""
    return build_graph(
        [make_code("A", "src/a.py"), make_code("B", "src/b.py"),
         make_test("T1", "tests/test_b.py"), make_test("T2", "tests/integration/test_a.py")],
        [
            edge("A", "B", RelationKind.CALLS, 0.8),
            edge("B", "T1", RelationKind.TESTS, 1.0),
            edge("A", "T2", RelationKind.TESTS, 1.0),
        ],
    )


def _session(config, graph=None, store=None, **kw):
    graph = graph or fan()
    return RLSession(PolicyStore(config, store), config, graph, store, rng=random.Random(1), **kw)


def _scores(impacts):
    return {t.test_id: t.impact_score for t in impacts}


class TestRefinement:
    def test_semantic_type_boost(self, config):
        g = fan()
        impacts = calculate_impacts(g, [change("A", SemanticType.BUG_FIX)])
        refined = _session(config, g).start_rl_test_session([change("A")], impacts).impacts
        # 1 + 0.2 * 0.3 for a bug fix
        assert _scores(refined)["T1"] == pytest.approx(0.36 * 1.06, abs=1e-4)
        assert _scores(refined)["T2"] == 1.0

    def test_scores_clamped(self, config):
        g = fan()
        impacts = calculate_impacts(g, [change("A")])
        refined = _session(config, g).start_rl_test_session([change("A")], impacts).impacts
        assert all(0.0 <= t.impact_score <= 1.0 for t in refined)

    def test_originals_not_mutated(self, config):
        g = fan()
        impacts = calculate_impacts(g, [change("A")])
        before = [t.impact_score for t in impacts]
        _session(config, g).start_rl_test_session([change("A")], impacts)
        assert [t.impact_score for t in impacts] == before

    def test_pair_adjustment_applied(self, config):
        g = fan()
        session = _session(config, g)
        with session.policy.session() as txn:
            txn.state.pair_adjustments["A|T1"] = -0.2
            txn.commit()
        impacts = calculate_impacts(g, [change("A", SemanticType.BUG_FIX)])
        refined = session.start_rl_test_session([change("A")], impacts).impacts
        assert _scores(refined)["T1"] == pytest.approx(0.36 * 1.06 - 0.2, abs=1e-4)

    def test_deterministic_with_seed(self):
        cfg = SikgConfig(exploration_rate=0.5, rl_seed=3)
        g = fan()
        impacts = calculate_impacts(g, [change("A")])
        a = RLSession(PolicyStore(cfg), cfg, g).start_rl_test_session([change("A")], impacts).impacts
        b = RLSession(PolicyStore(cfg), cfg, g).start_rl_test_session([change("A")], impacts).impacts
        assert _scores(a) == _scores(b)

    def test_session_recorded(self, config, store):
        g = fan()
        session = _session(config, g, store)
        impacts = calculate_impacts(g, [change("A")])
        run = session.start_rl_test_session([change("A")], impacts)
        saved = store.latest_rl_session("open")
        assert saved["session_id"] == run.session_id
        assert saved["changes"][0]["node_id"] == "A"
        assert set(saved["predictions"]) == {"T1", "T2"}
        assert saved["selected"] == ["T2"]


class TestFailClosed:
    def test_exception_returns_original(self, config, monkeypatch):
        g = fan()
        session = _session(config, g)
        impacts = calculate_impacts(g, [change("A")])

        def boom():
            raise RuntimeError("policy unavailable")

        monkeypatch.setattr(session.policy, "read", boom)
        run = session.start_rl_test_session([change("A")], impacts)
        assert run.impacts is impacts
        assert [t.to_dict() for t in run.impacts] == [t.to_dict() for t in calculate_impacts(g, [change("A")])]
        assert isinstance(run.rl_error, RuntimeError)
        assert run.rl_fallback
        assert run.session_id is None
        assert observability.counter("rl_fallbacks") == 1

    def test_open_circuit_returns_original(self, config):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        g = fan()
        session = _session(config, g, breaker=breaker)
        impacts = calculate_impacts(g, [change("A")])
        run = session.start_rl_test_session([change("A")], impacts)
        assert run.impacts is impacts
        assert isinstance(run.rl_error, CircuitOpen)

    def test_repeated_failures_open_circuit(self, config, monkeypatch):
        g = fan()
        session = _session(config, g)

        def boom():
            raise RuntimeError("nope")

        monkeypatch.setattr(session.policy, "read", boom)
        impacts = calculate_impacts(g, [change("A")])
        for _ in range(3):
            session.start_rl_test_session([change("A")], impacts)
        assert session.breaker.state == CircuitBreaker.OPEN
        assert isinstance(session.start_rl_test_session([change("A")], impacts).rl_error, CircuitOpen)

    def test_timeout_returns_original(self, monkeypatch):
        cfg = SikgConfig(exploration_rate=0.0, rl_timeout_seconds=0.05)
        g = fan()
        session = _session(cfg, g)
        real_read = session.policy.read

        def slow():
            time.sleep(0.5)
            return real_read()

        monkeypatch.setattr(session.policy, "read", slow)
        impacts = calculate_impacts(g, [change("A")])
        run = session.start_rl_test_session([change("A")], impacts)
        assert run.impacts is impacts
        assert isinstance(run.rl_error, OperationTimeout)

    def test_late_worker_leaves_no_open_session(self, store, monkeypatch):
        cfg = SikgConfig(exploration_rate=0.0, rl_timeout_seconds=0.05)
        g = fan()
        session = _session(cfg, g, store)
        real_read = session.policy.read
        finished = threading.Event()

        def slow():
            time.sleep(0.3)
            try:
                return real_read()
            finally:
                finished.set()

        monkeypatch.setattr(session.policy, "read", slow)
        impacts = calculate_impacts(g, [change("A")])
        run = session.start_rl_test_session([change("A")], impacts)
        assert run.rl_fallback
        assert finished.wait(2.0)
        time.sleep(0.1)
        assert store.latest_rl_session("open") is None
        assert session.load_session() is None

    def test_failed_save_falls_back(self, config, store, monkeypatch):
        g = fan()
        session = _session(config, g, store)

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "save_rl_session", broken)
        impacts = calculate_impacts(g, [change("A")])
        run = session.start_rl_test_session([change("A")], impacts)
        assert run.impacts is impacts
        assert run.session_id is None
        assert session.load_session() is None


class TestConcurrentRuns:
    def test_each_call_gets_its_own_session(self, config, store):
        g = fan()
        session = _session(config, g, store)
        impacts = calculate_impacts(g, [change("A")])
        barrier = threading.Barrier(4)

        def call(_):
            barrier.wait()
            return session.start_rl_test_session([change("A")], impacts)

        with ThreadPoolExecutor(max_workers=4) as pool:
            runs = list(pool.map(call, range(4)))

        ids = [r.session_id for r in runs]
        assert all(ids)
        assert len(set(ids)) == 4
        for r in runs:
            saved = store.get_rl_session(r.session_id)
            assert saved["predictions"] == {t.test_id: t.impact_score for t in r.impacts}


class TestFeedback:
    def _run(self, config, store=None):
        g = fan()
        session = _session(config, g, store)
        impacts = calculate_impacts(g, [change("A", SemanticType.BUG_FIX)])
        session.start_rl_test_session([change("A", SemanticType.BUG_FIX)], impacts)
        results = [
            TestResult(test_id="T1", status=TestStatus.FAILED),
            TestResult(test_id="T2", status=TestStatus.PASSED),
        ]
        return g, session, session.process_feedback(results)

    def test_metrics_and_reward(self, config):
        _, _, out = self._run(config)
        m = out["metrics"]
        assert (m["true_positives"], m["false_positives"], m["false_negatives"]) == (0, 1, 1)
        assert out["reward"] == pytest.approx(-0.6)

    def test_policy_adapts(self, config):
        _, session, _ = self._run(config)
        state = session.policy.read()
        assert state.version == 1
        assert state.sessions == 1
        assert state.parameters["selection_threshold"] == pytest.approx(0.56 * 0.95, abs=1e-4)
        assert state.average_reward == pytest.approx(-0.6)
        assert state.recent_metrics[-1]["reward"] == pytest.approx(-0.6)

    def test_edge_factors_follow_errors(self, config):
        g, _, out = self._run(config)
        assert out["edges_updated"] == 3
        # T2 was over-predicted, T1 under-predicted
        assert g.get_edge("A", "T2", RelationKind.TESTS).learned_factor < 1.0
        assert g.get_edge("A", "B", RelationKind.CALLS).learned_factor > 1.0
        assert g.get_edge("B", "T1", RelationKind.TESTS).learned_factor > 1.0

    def test_session_marked_processed(self, config, store):
        _, session, out = self._run(config, store)
        assert store.get_rl_session(out["session_id"])["status"] == "processed"
        assert store.latest_rl_session("open") is None

    def test_missed_failure_raises_pair_and_type(self, config):
        session = _session(config)
        out = session.process_feedback([TestResult(
            test_id="T1", status=TestStatus.FAILED, predicted_impact=0.1,
            changed_node_ids=["A"], change_types={"A": "BUG_FIX"},
        )])
        state = session.policy.read()
        assert out["pair_adjustments"] == 1
        assert state.pair_adjustments["A|T1"] == pytest.approx(0.009)
        assert state.type_adjustments["BUG_FIX"] == pytest.approx(0.009)

    def test_consistent_passes_lower_pair(self, config):
        session = _session(config)
        result = TestResult(test_id="T2", status=TestStatus.PASSED, predicted_impact=0.9,
                            changed_node_ids=["A"])
        for _ in range(2):
            session.process_feedback([result])
        assert "A|T2" not in session.policy.read().pair_adjustments
        session.process_feedback([result])
        assert session.policy.read().pair_adjustments["A|T2"] == pytest.approx(-0.0045)

    def test_failure_resets_pass_streak(self, config):
        session = _session(config)
        passed = TestResult(test_id="T2", status=TestStatus.PASSED, predicted_impact=0.9,
                            changed_node_ids=["A"])
        failed = TestResult(test_id="T2", status=TestStatus.FAILED, predicted_impact=0.9,
                            changed_node_ids=["A"])
        session.process_feedback([passed, passed])
        session.process_feedback([failed])
        assert "T2" not in session.policy.read().pass_streaks

    def test_adjustments_bounded(self):
        cfg = SikgConfig(learning_rate=1.0, exploration_rate=0.0)
        session = _session(cfg)
        for _ in range(3):
            session.process_feedback([TestResult(
                test_id="T1", status=TestStatus.FAILED, predicted_impact=0.0,
                changed_node_ids=["A"], change_types={"A": "BUG_FIX"},
            )])
        state = session.policy.read()
        assert state.pair_adjustments["A|T1"] == 0.5
        assert state.type_adjustments["BUG_FIX"] == 0.5

    def test_custom_reward(self, config):
        session = _session(config, reward=lambda metrics, preds: 0.42)
        out = session.process_feedback([TestResult(test_id="T1", status=TestStatus.PASSED)])
        assert out["reward"] == 0.42

    def test_feedback_counter(self, config):
        self._run(config)
        assert observability.counter("feedback_sessions") == 1

    def test_status(self, config):
        _, session, _ = self._run(config)
        status = session.status()
        assert status["enabled"] is True
        assert status["circuit"] == "closed"
        assert status["sessions"] == 1
        assert status["recommendations"]
