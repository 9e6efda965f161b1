"""Graph store: typed nodes and directed weighted edges on a NetworkX MultiDiGraph.

Edges are keyed by relation kind, so ``(source, target, kind)`` is unique and
duplicates merge by maximum weight.  Each edge carries three weight layers:

    base_weight        structural weight supplied at ingestion (max-merged)
    calibrated_weight  result of historical recalibration (starts at base)
    learned_factor     multiplicative adjustment from test feedback

The effective weight seen by propagation is
``clamp(calibrated_weight * learned_factor, 0, 1)``.

All mutations and reads take the store lock, so a reader never observes a
half-updated edge.  Propagation batches work on ``snapshot()`` copies.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable

import networkx as nx

from sikg import defaults
from sikg.ids import normalize_path
from sikg.models import Edge, Node, NodeType, RelationKind

log = logging.getLogger("sikg.graph")


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def _node_view(node: Node) -> Node:
    """Detached copy of a stored node; callers cannot edit the graph through it."""
    return replace(
        node,
        location=replace(node.location) if node.location else None,
        properties=dict(node.properties),
    )


def _check_unit(name: str, value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")
    return float(value)


class GraphStore:
    """Id-addressed knowledge graph of code elements and test cases."""

    def __init__(self, workspace_root: str | None = None) -> None:
        self.workspace_root = workspace_root
        self._g = nx.MultiDiGraph()
        self._lock = threading.RLock()

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._g

    def __len__(self) -> int:
        return self._g.number_of_nodes()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        with self._lock:
            if node_id not in self._g:
                return None
            return _node_view(self._g.nodes[node_id]["node"])

    def get_outgoing_edges(self, node_id: str) -> list[Edge]:
        """Outgoing edges in stable order: targets by first insertion, then kinds."""
        with self._lock:
            if node_id not in self._g:
                return []
            return [
                self._to_edge(node_id, target, kind, attrs)
                for _, target, kind, attrs in self._g.out_edges(node_id, keys=True, data=True)
            ]

    def get_incoming_edges(self, node_id: str) -> list[Edge]:
        with self._lock:
            if node_id not in self._g:
                return []
            return [
                self._to_edge(source, node_id, kind, attrs)
                for source, _, kind, attrs in self._g.in_edges(node_id, keys=True, data=True)
            ]

    def get_edge(self, source: str, target: str, kind: RelationKind | str) -> Edge | None:
        key = RelationKind(kind).value
        with self._lock:
            if not self._g.has_edge(source, target, key):
                return None
            return self._to_edge(source, target, key, self._g.edges[source, target, key])

    def edges(self) -> list[Edge]:
        with self._lock:
            return [
                self._to_edge(s, t, k, attrs)
                for s, t, k, attrs in self._g.edges(keys=True, data=True)
            ]

    def nodes(self) -> list[Node]:
        with self._lock:
            return [_node_view(data["node"]) for _, data in self._g.nodes(data=True)]

    def get_test_nodes(self) -> list[Node]:
        return [n for n in self.nodes() if n.is_test]

    def get_code_nodes(self) -> list[Node]:
        return [n for n in self.nodes() if not n.is_test]

    def get_nodes_by_file(self, file_path: str) -> list[Node]:
        path = normalize_path(file_path, self.workspace_root)
        return [n for n in self.nodes() if n.file_path == path]

    def file_anchor(self, file_path: str) -> Node | None:
        """Module node of a file, else its first code element."""
        code = [n for n in self.get_nodes_by_file(file_path) if not n.is_test]
        for n in code:
            if n.properties.get("kind") == "module":
                return n
        return code[0] if code else None

    def stats(self) -> dict[str, int]:
        with self._lock:
            tests = sum(1 for _, d in self._g.nodes(data=True) if d["node"].is_test)
            return {
                "nodes": self._g.number_of_nodes(),
                "edges": self._g.number_of_edges(),
                "test_nodes": tests,
                "code_nodes": self._g.number_of_nodes() - tests,
            }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert_node(self, node: Node) -> Node:
        """Insert or update a node in place, preserving its id and edges.

        Stored ``Node`` objects are replaced, never mutated, so snapshots
        taken earlier keep their view.
        """
        with self._lock:
            path = normalize_path(node.file_path, self.workspace_root)
            if node.id in self._g:
                current: Node = self._g.nodes[node.id]["node"]
                props = {k: v for k, v in current.properties.items() if k != "placeholder"}
                props.update(node.properties)
                merged = replace(
                    current,
                    type=node.type,
                    name=node.name,
                    file_path=path or current.file_path,
                    location=replace(node.location) if node.location else current.location,
                    properties=props,
                )
            else:
                merged = replace(_node_view(node), file_path=path)
            self._g.add_node(node.id, node=merged)
            return _node_view(merged)

    def upsert_edge(self, edge: Edge) -> Edge:
        """Insert an edge or merge it into the existing one by maximum weight.

        Missing endpoints are created as placeholder code elements.
        """
        weight = _check_unit("weight", edge.weight)
        key = RelationKind(edge.type).value
        with self._lock:
            for endpoint in (edge.source, edge.target):
                if endpoint not in self._g:
                    self._g.add_node(endpoint, node=Node(
                        id=endpoint,
                        type=NodeType.CODE_ELEMENT,
                        name=endpoint,
                        properties={"placeholder": True},
                    ))
            if self._g.has_edge(edge.source, edge.target, key):
                attrs = self._g.edges[edge.source, edge.target, key]
                attrs["base_weight"] = max(attrs["base_weight"], weight)
                attrs["calibrated_weight"] = max(attrs["calibrated_weight"], weight)
                attrs["properties"] = {**attrs["properties"], **edge.properties}
            else:
                self._g.add_edge(
                    edge.source, edge.target, key=key,
                    base_weight=weight,
                    calibrated_weight=weight,
                    learned_factor=1.0,
                    properties=dict(edge.properties),
                )
            return self._to_edge(
                edge.source, edge.target, key, self._g.edges[edge.source, edge.target, key]
            )

    def apply_batch(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> dict[str, int]:
        """Apply one parsed file's nodes and edges atomically."""
        nodes, edges = list(nodes), list(edges)
        for e in edges:
            _check_unit("weight", e.weight)
            RelationKind(e.type)
        with self._lock:
            for n in nodes:
                self.upsert_node(n)
            for e in edges:
                self.upsert_edge(e)
        return {"nodes": len(nodes), "edges": len(edges)}

    def remove_node(self, node_id: str) -> bool:
        with self._lock:
            if node_id not in self._g:
                return False
            self._g.remove_node(node_id)
            return True

    def remove_file(self, file_path: str) -> int:
        """Remove every node that belongs to a deleted source file."""
        path = normalize_path(file_path, self.workspace_root)
        with self._lock:
            doomed = [nid for nid, d in self._g.nodes(data=True) if d["node"].file_path == path]
            self._g.remove_nodes_from(doomed)
        if doomed:
            log.info("Removed %d nodes for deleted file %s", len(doomed), path)
        return len(doomed)

    def set_calibrated_weight(
        self, source: str, target: str, kind: RelationKind | str, weight: float,
    ) -> Edge:
        key = RelationKind(kind).value
        weight = _check_unit("calibrated_weight", weight)
        with self._lock:
            if not self._g.has_edge(source, target, key):
                raise KeyError(f"No {key} edge {source} -> {target}")
            attrs = self._g.edges[source, target, key]
            attrs["calibrated_weight"] = weight
            return self._to_edge(source, target, key, attrs)

    def set_learned_factor(
        self, source: str, target: str, kind: RelationKind | str, factor: float,
    ) -> Edge:
        key = RelationKind(kind).value
        factor = _clamp(factor, defaults.LEARNED_FACTOR_MIN, defaults.LEARNED_FACTOR_MAX)
        with self._lock:
            if not self._g.has_edge(source, target, key):
                raise KeyError(f"No {key} edge {source} -> {target}")
            attrs = self._g.edges[source, target, key]
            attrs["learned_factor"] = factor
            return self._to_edge(source, target, key, attrs)

    def set_node_properties(self, node_id: str, **properties: Any) -> Node | None:
        with self._lock:
            current = self.get_node(node_id)
            if current is None:
                return None
            updated = replace(current, properties={**current.properties, **properties})
            self._g.add_node(node_id, node=updated)
            return _node_view(updated)

    # ------------------------------------------------------------------
    # Snapshots and interchange
    # ------------------------------------------------------------------

    def snapshot(self) -> GraphStore:
        """Copy-on-write copy for a propagation batch."""
        with self._lock:
            snap = GraphStore(self.workspace_root)
            snap._g = self._g.copy()
            return snap

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "workspace_root": self.workspace_root,
                "nodes": [n.to_dict() for n in self.nodes()],
                "edges": [e.to_dict() for e in self.edges()],
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any], workspace_root: str | None = None) -> GraphStore:
        store = cls(workspace_root or data.get("workspace_root"))
        for nd in data.get("nodes", []):
            store.upsert_node(Node.from_dict(nd))
        for ed in data.get("edges", []):
            edge = Edge.from_dict(ed)
            base = edge.base_weight if edge.base_weight is not None else edge.weight
            base = _check_unit("base_weight", base)
            store.upsert_edge(replace(edge, weight=base))
            if edge.calibrated_weight is not None:
                store.set_calibrated_weight(
                    edge.source, edge.target, edge.type, edge.calibrated_weight,
                )
            if edge.learned_factor != 1.0:
                store.set_learned_factor(edge.source, edge.target, edge.type, edge.learned_factor)
        return store

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _to_edge(source: str, target: str, key: str, attrs: dict[str, Any]) -> Edge:
        calibrated = attrs["calibrated_weight"]
        factor = attrs["learned_factor"]
        return Edge(
            source=source,
            target=target,
            type=RelationKind(key),
            weight=_clamp(calibrated * factor),
            base_weight=attrs["base_weight"],
            calibrated_weight=calibrated,
            learned_factor=factor,
            properties=dict(attrs["properties"]),
        )


# ---------------------------------------------------------------------------
# JSON persistence
# ---------------------------------------------------------------------------

def load_graph(path: str | Path, workspace_root: str | None = None) -> GraphStore:
    p = Path(path)
    if not p.exists():
        log.info("Graph file %s not found, starting empty", p)
        return GraphStore(workspace_root)
    return GraphStore.from_dict(json.loads(p.read_text()), workspace_root)


def save_graph(graph: GraphStore, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(json.dumps(graph.to_dict(), indent=2))
    tmp.replace(p)
    return p
