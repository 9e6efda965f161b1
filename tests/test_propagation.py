"""Tests for breadth-first impact propagation."""

import pytest

from conftest import build_graph, chain, change, edge, make_code, make_test
from sikg.impact.propagation import (
    attenuation,
    calculate_impacts,
    normalize_scores,
    propagate_change,
    propagate_parallel,
    relation_multiplier,
)
from sikg.models import RelationKind, SemanticType


def _scores(impacts):
    return {t.test_id: t.impact_score for t in impacts}


class TestWorkedExample:
    def test_chain_raw_and_normalized(self):
        impacts = calculate_impacts(chain(), [change("A")], max_depth=2)
        assert len(impacts) == 1
        t = impacts[0]
        assert t.test_id == "T"
        assert t.raw_score == pytest.approx(0.36)
        assert t.impact_score == 1.0
        assert t.test_name == "T"
        assert t.test_path == "tests/test_b.py"

    def test_contribution_attenuated_by_depth(self):
        [t] = calculate_impacts(chain(), [change("A", SemanticType.BUG_FIX)], max_depth=2)
        [c] = t.contributing_changes
        assert c.node_id == "A"
        assert c.semantic_type == SemanticType.BUG_FIX
        assert c.contribution == pytest.approx(0.12)

    def test_depth_limit_stops_before_test(self):
        assert calculate_impacts(chain(), [change("A")], max_depth=1) == []

    def test_zero_depth_only_scores_seed(self):
        g = build_graph([make_test("T")], [])
        [t] = calculate_impacts(g, [change("T", score=0.4)], max_depth=0)
        assert t.raw_score == pytest.approx(0.4)


class TestAttenuation:
    def test_relation_multipliers(self):
        assert relation_multiplier(RelationKind.TESTS) == 1.0
        assert relation_multiplier(RelationKind.CALLS) == 0.9
        assert relation_multiplier(RelationKind.IMPORTS) == 0.6
        assert relation_multiplier("SOMETHING_ELSE") == 0.5

    def test_attenuation_by_depth(self):
        assert attenuation(0, RelationKind.CALLS) == pytest.approx(0.9)
        assert attenuation(2, RelationKind.TESTS) == pytest.approx(1 / 3)

    def test_deeper_tests_score_lower(self):
        g = build_graph(
            [make_code("A"), make_code("B"), make_test("near"), make_test("far")],
            [
                edge("A", "near", RelationKind.TESTS, 1.0),
                edge("A", "B", RelationKind.CALLS, 1.0),
                edge("B", "far", RelationKind.TESTS, 1.0),
            ],
        )
        scores = _scores(calculate_impacts(g, [change("A")]))
        assert scores["near"] > scores["far"]


class TestPruning:
    def test_below_threshold_never_enqueued(self):
        g = build_graph(
            [make_code("A"), make_code("B"), make_test("T")],
            [edge("A", "B", RelationKind.CALLS, 0.5), edge("B", "T", RelationKind.TESTS, 0.5)],
        )
        # A->B: 0.45, B->T: 0.45 * 0.5 * 0.5 = 0.1125
        assert _scores(calculate_impacts(g, [change("A")], min_threshold=0.05)) == {"T": 1.0}
        assert calculate_impacts(g, [change("A")], min_threshold=0.2) == []

    def test_long_low_weight_chain(self):
        nodes = [make_code(f"n{i}") for i in range(6)] + [make_test("T")]
        edges = [edge(f"n{i}", f"n{i + 1}", RelationKind.CALLS, 0.3) for i in range(5)]
        edges.append(edge("n5", "T", RelationKind.TESTS, 1.0))
        g = build_graph(nodes, edges)
        hits = propagate_change(g, change("n0"), max_depth=10, min_threshold=0.05)
        assert "T" not in hits

    def test_threshold_is_strict(self):
        g = build_graph(
            [make_code("A"), make_test("T")], [edge("A", "T", RelationKind.TESTS, 0.5)],
        )
        assert calculate_impacts(g, [change("A")], min_threshold=0.5) == []


class TestTraversal:
    def test_cycles_terminate(self):
        g = chain()
        g.upsert_edge(edge("B", "A", RelationKind.CALLS, 1.0))
        g.upsert_edge(edge("T", "B", RelationKind.IS_TESTED_BY, 1.0))
        [t] = calculate_impacts(g, [change("A")])
        assert t.raw_score == pytest.approx(0.36)

    def test_first_discovery_wins(self):
        # T is reachable directly and through B; only the first enqueue counts.
        g = build_graph(
            [make_code("A"), make_code("B"), make_test("T")],
            [
                edge("A", "T", RelationKind.TESTS, 0.5),
                edge("A", "B", RelationKind.CALLS, 1.0),
                edge("B", "T", RelationKind.TESTS, 1.0),
            ],
        )
        [t] = calculate_impacts(g, [change("A")])
        assert t.raw_score == pytest.approx(0.5)

    def test_missing_change_node_skipped(self):
        assert calculate_impacts(chain(), [change("ghost")]) == []

    def test_missing_node_does_not_affect_others(self):
        impacts = calculate_impacts(chain(), [change("ghost"), change("A")])
        assert _scores(impacts) == {"T": 1.0}

    def test_seed_score_scales_linearly(self):
        [t] = calculate_impacts(chain(), [change("A", score=0.5)])
        assert t.raw_score == pytest.approx(0.18)

    def test_boost_added_per_hop(self):
        [t] = calculate_impacts(chain(), [change("A")], boost=lambda c, target: 0.1)
        # (0.72 + 0.1) * 0.5 + 0.1
        assert t.raw_score == pytest.approx(0.51)

    def test_boost_receives_change_and_target(self):
        seen = []

        def boost(c, target):
            seen.append((c.node_id, target))
            return 0.0

        calculate_impacts(chain(), [change("A")], boost=boost)
        assert seen == [("A", "B"), ("B", "T")]


class TestAccumulation:
    def _fan(self):
        return build_graph(
            [make_code("A"), make_code("B"), make_code("C"), make_test("T1"), make_test("T2")],
            [
                edge("A", "B", RelationKind.CALLS, 0.8),
                edge("B", "T1", RelationKind.TESTS, 1.0),
                edge("A", "T2", RelationKind.TESTS, 1.0),
                edge("C", "T1", RelationKind.TESTS, 1.0),
            ],
        )

    def test_peak_of_one_not_rescaled(self):
        scores = _scores(calculate_impacts(self._fan(), [change("A")]))
        assert scores == {"T1": 0.36, "T2": 1.0}

    def test_normalized_by_peak(self):
        scores = _scores(calculate_impacts(self._fan(), [change("A", score=0.5)]))
        assert scores == {"T1": 0.36, "T2": 1.0}

    def test_scores_accumulate_across_changes(self):
        [t1] = [t for t in calculate_impacts(self._fan(), [change("A"), change("C")]) if t.test_id == "T1"]
        assert t1.raw_score == pytest.approx(1.36)
        assert {c.node_id for c in t1.contributing_changes} == {"A", "C"}

    def test_same_node_different_types_kept_apart(self):
        impacts = calculate_impacts(
            chain(), [change("A", SemanticType.BUG_FIX), change("A", SemanticType.REFACTORING_LOGIC)],
        )
        [t] = impacts
        assert t.raw_score == pytest.approx(0.72)
        assert {c.semantic_type for c in t.contributing_changes} == {
            SemanticType.BUG_FIX, SemanticType.REFACTORING_LOGIC,
        }

    def test_scores_within_unit_interval(self):
        impacts = calculate_impacts(self._fan(), [change("A", score=3.0), change("C", score=2.0)])
        assert all(0.0 <= t.impact_score <= 1.0 for t in impacts)
        assert max(t.impact_score for t in impacts) == 1.0


class TestNormalize:
    def test_empty(self):
        assert normalize_scores({}) == {}

    def test_all_zero(self):
        assert normalize_scores({"a": 0.0}) == {"a": 0.0}

    def test_rounds_to_four_places(self):
        assert normalize_scores({"a": 3.0, "b": 1.0}) == {"a": 1.0, "b": 0.3333}


class TestDeterminism:
    def test_repeat_runs_identical(self):
        g = TestAccumulation()._fan()
        changes = [change("A"), change("C", SemanticType.FEATURE_ADDITION, 0.7)]
        first = [t.to_dict() for t in calculate_impacts(g, changes)]
        second = [t.to_dict() for t in calculate_impacts(g, changes)]
        assert first == second

    def test_parallel_matches_sequential(self):
        g = TestAccumulation()._fan()
        changes = [change("A"), change("C", SemanticType.FEATURE_ADDITION, 0.7), change("B")]
        seq = [t.to_dict() for t in calculate_impacts(g, changes)]
        par = [t.to_dict() for t in propagate_parallel(g, changes, workers=3)]
        assert par == seq


class TestDepthMonotonicity:
    def _branching(self):
        # Two branches fan out from A and rejoin at D; E loops back to B.
        return build_graph(
            [make_code(n) for n in "ABCDEF"]
            + [make_test("T1"), make_test("T2"), make_test("T3"), make_test("T4")],
            [
                edge("A", "B", RelationKind.CALLS, 0.9),
                edge("A", "C", RelationKind.USES, 0.7),
                edge("B", "D", RelationKind.CALLS, 0.8),
                edge("C", "D", RelationKind.INHERITS_FROM, 0.9),
                edge("D", "E", RelationKind.CALLS, 0.9),
                edge("E", "B", RelationKind.CALLS, 1.0),
                edge("E", "F", RelationKind.DEPENDS_ON, 0.9),
                edge("B", "T1", RelationKind.TESTS, 1.0),
                edge("D", "T2", RelationKind.TESTS, 0.9),
                edge("F", "T3", RelationKind.TESTS, 1.0),
                edge("C", "T4", RelationKind.TESTS, 0.6),
                edge("E", "T4", RelationKind.TESTS, 1.0),
            ],
        )

    @pytest.mark.parametrize("changes", [
        [change("A")],
        [change("A"), change("E", SemanticType.FEATURE_ADDITION, 0.6)],
        [change("C", SemanticType.REFACTORING_LOGIC), change("B")],
    ])
    def test_raw_scores_never_drop_with_depth(self, changes):
        g = self._branching()
        previous: dict[str, float] = {}
        for depth in range(0, 8):
            impacts = calculate_impacts(g, changes, max_depth=depth, min_threshold=0.001)
            raw = {t.test_id: t.raw_score for t in impacts}
            for test_id, score in previous.items():
                assert raw.get(test_id, 0.0) >= score - 1e-12, (test_id, depth)
            previous = raw
        assert set(previous) == {"T1", "T2", "T3", "T4"}

    def test_deeper_search_reaches_more_tests(self):
        g = self._branching()
        reached = [
            len(calculate_impacts(g, [change("A")], max_depth=depth, min_threshold=0.001))
            for depth in range(0, 8)
        ]
        assert reached == sorted(reached)
        assert reached[0] == 0
        assert reached[-1] == 4
