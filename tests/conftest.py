"""Shared fixtures for sikg tests."""

import random

import pytest

from sikg import feature_flags, observability
from sikg.adapters.sqlite_store import SqliteStore
from sikg.config import SikgConfig
from sikg.graph import GraphStore
from sikg.models import Edge, Node, NodeType, RelationKind, SemanticChange, SemanticType


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: exercises several components end to end")


# ---------------------------------------------------------------------------
# Auto-use fixtures: cleanup global state between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_feature_flags(monkeypatch):
    """Reset feature flag global state around every test."""
    for name in ("RL_REFINEMENT", "HISTORICAL_BOOST", "COCHANGE_EDGES", "PARALLEL_PROPAGATION"):
        monkeypatch.delenv(f"SIKG_FF_{name}", raising=False)
    feature_flags._flags.clear()
    feature_flags._loaded = False
    yield
    feature_flags._flags.clear()
    feature_flags._loaded = False


@pytest.fixture(autouse=True)
def _reset_metrics():
    yield
    observability.reset_metrics()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_code(node_id, file_path="", **props):
    return Node(id=node_id, type=NodeType.CODE_ELEMENT, name=node_id, file_path=file_path,
                properties=props)


def make_test(node_id, file_path="tests/test_mod.py", **props):
    return Node(id=node_id, type=NodeType.TEST_CASE, name=node_id, file_path=file_path,
                properties=props)


def edge(source, target, kind=RelationKind.CALLS, weight=1.0, **props):
    return Edge(source=source, target=target, type=kind, weight=weight, properties=props)


def change(node_id, stype=SemanticType.BUG_FIX, score=1.0):
    return SemanticChange(node_id=node_id, semantic_type=stype, initial_impact_score=score)


def build_graph(nodes, edges):
    g = GraphStore()
    g.apply_batch(nodes, edges)
    return g


def chain():
    """``A --CALLS(0.8)--> B --TESTS(1.0)--> T``."""
    return build_graph(
        [make_code("A", "src/a.py"), make_code("B", "src/b.py"), make_test("T", "tests/test_b.py")],
        [edge("A", "B", RelationKind.CALLS, 0.8), edge("B", "T", RelationKind.TESTS, 1.0)],
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "state.db"


@pytest.fixture
def store(db_path):
    """Fresh SqliteStore for each test."""
    return SqliteStore(db_path)


@pytest.fixture
def config():
    """Default configuration without exploration noise."""
    return SikgConfig(exploration_rate=0.0, rl_seed=7).validate()


@pytest.fixture
def chain_graph():
    return chain()


@pytest.fixture
def engine(config, chain_graph, store):
    from sikg.engine import SikgEngine
    return SikgEngine(config, chain_graph, store, rng=random.Random(7))
