"""Tests for the knowledge graph store."""

import json

import pytest

from conftest import build_graph, chain, edge, make_code, make_test
from sikg.graph import GraphStore, load_graph, save_graph
from sikg.models import Edge, Node, NodeType, RelationKind


class TestNodes:
    def test_upsert_and_get(self):
        g = GraphStore()
        g.upsert_node(make_code("A", "src/a.py"))
        assert g.get_node("A").file_path == "src/a.py"
        assert "A" in g
        assert len(g) == 1

    def test_get_missing_node(self):
        assert GraphStore().get_node("nope") is None

    def test_upsert_merges_properties_and_keeps_edges(self):
        g = chain()
        g.upsert_node(make_code("B", "src/b.py", kind="function", complexity=3))
        g.upsert_node(make_code("B", "src/b.py", complexity=5))
        node = g.get_node("B")
        assert node.properties == {"kind": "function", "complexity": 5}
        assert g.get_edge("B", "T", RelationKind.TESTS) is not None

    def test_paths_normalized_against_workspace(self):
        g = GraphStore(workspace_root="/work/repo")
        g.upsert_node(make_code("A", "/work/repo/src\\a.py"))
        assert g.get_node("A").file_path == "src/a.py"
        assert [n.id for n in g.get_nodes_by_file("/work/repo/src/a.py")] == ["A"]

    def test_stored_node_replaced_not_mutated(self):
        g = chain()
        before = g.get_node("B")
        g.set_node_properties("B", hot=True)
        assert "hot" not in before.properties
        assert g.get_node("B").properties["hot"] is True

    def test_returned_node_edits_do_not_reach_the_graph(self):
        g = chain()
        snap = g.snapshot()
        node = g.get_node("B")
        node.properties["hot"] = True
        node.name = "renamed"
        for listed in g.nodes():
            listed.properties["listed"] = True
        assert g.get_node("B").properties == {}
        assert g.get_node("B").name == "B"
        assert snap.get_node("B").properties == {}
        saved = {n["id"]: n["properties"] for n in g.to_dict()["nodes"]}
        assert saved["B"] == {}

    def test_caller_node_detached_after_upsert(self):
        g = GraphStore()
        original = make_code("A", "src/a.py", kind="function")
        returned = g.upsert_node(original)
        original.properties["kind"] = "class"
        returned.properties["kind"] = "module"
        assert g.get_node("A").properties == {"kind": "function"}

    def test_test_and_code_partitions(self):
        g = chain()
        assert [n.id for n in g.get_test_nodes()] == ["T"]
        assert sorted(n.id for n in g.get_code_nodes()) == ["A", "B"]

    def test_stats(self):
        assert chain().stats() == {"nodes": 3, "edges": 2, "test_nodes": 1, "code_nodes": 2}


class TestEdges:
    def test_duplicate_edges_merge_by_max_weight(self):
        g = GraphStore()
        g.upsert_edge(edge("A", "B", RelationKind.CALLS, 0.4))
        g.upsert_edge(edge("A", "B", RelationKind.CALLS, 0.9))
        g.upsert_edge(edge("A", "B", RelationKind.CALLS, 0.2))
        e = g.get_edge("A", "B", RelationKind.CALLS)
        assert e.weight == 0.9
        assert len(g.get_outgoing_edges("A")) == 1

    def test_different_kinds_are_distinct_edges(self):
        g = GraphStore()
        g.upsert_edge(edge("A", "B", RelationKind.CALLS, 0.4))
        g.upsert_edge(edge("A", "B", RelationKind.IMPORTS, 0.6))
        assert {e.type for e in g.get_outgoing_edges("A")} == {RelationKind.CALLS, RelationKind.IMPORTS}

    def test_placeholder_endpoints(self):
        g = GraphStore()
        g.upsert_edge(edge("A", "B"))
        assert g.get_node("B").properties == {"placeholder": True}
        g.upsert_node(make_test("B"))
        node = g.get_node("B")
        assert node.type == NodeType.TEST_CASE
        assert "placeholder" not in node.properties

    def test_weight_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            Edge(source="A", target="B", type=RelationKind.CALLS, weight=1.5)

    def test_unknown_relation_kind_rejected(self):
        with pytest.raises(ValueError):
            Edge.from_dict({"source": "A", "target": "B", "type": "FRIENDS_WITH", "weight": 0.5})

    def test_outgoing_order_is_insertion_order(self):
        g = GraphStore()
        for target in ("C", "A", "B"):
            g.upsert_edge(edge("S", target))
        assert [e.target for e in g.get_outgoing_edges("S")] == ["C", "A", "B"]

    def test_incoming_edges(self):
        g = chain()
        assert [(e.source, e.type) for e in g.get_incoming_edges("T")] == [("B", RelationKind.TESTS)]

    def test_effective_weight_combines_layers(self):
        g = chain()
        g.set_calibrated_weight("A", "B", RelationKind.CALLS, 0.6)
        g.set_learned_factor("A", "B", RelationKind.CALLS, 1.5)
        e = g.get_edge("A", "B", RelationKind.CALLS)
        assert e.base_weight == 0.8
        assert e.calibrated_weight == 0.6
        assert e.weight == pytest.approx(0.9)

    def test_effective_weight_clamped(self):
        g = chain()
        g.set_learned_factor("B", "T", RelationKind.TESTS, 2.0)
        assert g.get_edge("B", "T", RelationKind.TESTS).weight == 1.0

    def test_learned_factor_bounds(self):
        g = chain()
        assert g.set_learned_factor("A", "B", "CALLS", 10.0).learned_factor == 2.0
        assert g.set_learned_factor("A", "B", "CALLS", 0.01).learned_factor == 0.5

    def test_set_weight_on_missing_edge(self):
        with pytest.raises(KeyError):
            chain().set_calibrated_weight("A", "T", RelationKind.CALLS, 0.5)

    def test_batch_validates_before_applying(self):
        g = GraphStore()
        good = edge("A", "B")
        bad = Edge(source="B", target="C", type="NOPE", weight=0.5)
        with pytest.raises(ValueError):
            g.apply_batch([make_code("A")], [good, bad])
        assert len(g) == 0


class TestRemoval:
    def test_remove_node_drops_edges(self):
        g = chain()
        assert g.remove_node("B") is True
        assert g.get_outgoing_edges("A") == []
        assert g.remove_node("B") is False

    def test_remove_file(self):
        g = build_graph(
            [make_code("A", "src/a.py"), make_code("A2", "src/a.py"), make_code("B", "src/b.py")],
            [edge("A", "B")],
        )
        assert g.remove_file("src/a.py") == 2
        assert [n.id for n in g.nodes()] == ["B"]


class TestSnapshots:
    def test_snapshot_isolated_from_later_writes(self):
        g = chain()
        snap = g.snapshot()
        g.set_calibrated_weight("A", "B", RelationKind.CALLS, 0.1)
        g.upsert_node(make_test("T2"))
        assert snap.get_edge("A", "B", RelationKind.CALLS).weight == 0.8
        assert snap.get_node("T2") is None

    def test_file_anchor_prefers_module(self):
        g = build_graph(
            [make_code("f", "src/a.py", kind="function"), make_code("m", "src/a.py", kind="module")],
            [],
        )
        assert g.file_anchor("src/a.py").id == "m"
        assert g.file_anchor("src/none.py") is None


class TestPersistence:
    def test_round_trip_keeps_weight_layers(self, tmp_path):
        g = chain()
        g.set_calibrated_weight("A", "B", RelationKind.CALLS, 0.5)
        g.set_learned_factor("A", "B", RelationKind.CALLS, 1.2)
        path = save_graph(g, tmp_path / "g" / "graph.json")
        loaded = load_graph(path)
        e = loaded.get_edge("A", "B", RelationKind.CALLS)
        assert e.base_weight == 0.8
        assert e.calibrated_weight == 0.5
        assert e.learned_factor == 1.2
        assert loaded.get_node("T").type == NodeType.TEST_CASE
        assert loaded.stats() == g.stats()

    def test_saved_file_is_json(self, tmp_path):
        path = save_graph(chain(), tmp_path / "graph.json")
        data = json.loads(path.read_text())
        assert {"nodes", "edges"} <= set(data)
        assert not (tmp_path / "graph.json.tmp").exists()

    def test_missing_file_loads_empty(self, tmp_path):
        assert len(load_graph(tmp_path / "nope.json")) == 0

    def test_node_from_dict_requires_id(self):
        with pytest.raises(ValueError):
            Node.from_dict({"name": "x"})
