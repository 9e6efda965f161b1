"""Parser capability interface and registry.

Parsers turn a source artifact into a graph fragment.  The engine only sees
the fragment, never which parser produced it.  The built-in parser reads
fragments that an external extractor already wrote as JSON.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from sikg.graph.store import GraphStore
from sikg.ids import make_test_id, node_id
from sikg.models import Edge, Node, NodeType, RelationKind

log = logging.getLogger("sikg.parsers")


@dataclass
class GraphFragment:
    source: str
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)


@runtime_checkable
class ParserPort(Protocol):
    name: str

    def can_handle(self, path: str) -> bool: ...
    def parse(self, path: str, content: str) -> GraphFragment: ...


class ParserRegistry:
    def __init__(self) -> None:
        self._parsers: list[ParserPort] = []

    def register(self, parser: ParserPort) -> None:
        self._parsers.append(parser)

    def parser_for(self, path: str) -> ParserPort | None:
        for p in self._parsers:
            if p.can_handle(path):
                return p
        return None

    def ingest(self, graph: GraphStore, paths: list[str | Path]) -> dict[str, Any]:
        """Parse each file and apply its fragment to *graph* as one batch."""
        summary: dict[str, Any] = {"files": 0, "nodes": 0, "edges": 0, "skipped": []}
        for path in paths:
            p = Path(path)
            parser = self.parser_for(str(p))
            if parser is None:
                log.debug("No parser for %s", p)
                summary["skipped"].append(str(p))
                continue
            fragment = parser.parse(str(p), p.read_text())
            applied = graph.apply_batch(fragment.nodes, fragment.edges)
            summary["files"] += 1
            summary["nodes"] += applied["nodes"]
            summary["edges"] += applied["edges"]
            log.info("Ingested %s via %s: %d nodes, %d edges",
                     p, parser.name, applied["nodes"], applied["edges"])
        return summary


class JsonFragmentParser:
    """Reads ``{"nodes": [...], "edges": [...]}`` fragments.

    Nodes without an id get the content-addressed id for their kind, name and
    path.  Every ``TESTS`` edge also yields the reverse ``IS_TESTED_BY`` edge.
    """

    name = "json-fragment"

    def __init__(self, workspace_root: str | None = None) -> None:
        self.workspace_root = workspace_root

    def can_handle(self, path: str) -> bool:
        return path.endswith(".json")

    def parse(self, path: str, content: str) -> GraphFragment:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValueError(f"{path}: invalid JSON fragment ({e})") from e
        if not isinstance(data, dict):
            raise ValueError(f"{path}: fragment must be a JSON object")

        fragment = GraphFragment(source=path)
        for nd in data.get("nodes", []):
            fragment.nodes.append(Node.from_dict(self._with_id(nd)))

        seen: set[tuple[str, str, str]] = set()
        for ed in data.get("edges", []):
            edge = Edge.from_dict(ed)
            fragment.edges.append(edge)
            seen.add((edge.source, edge.target, edge.type.value))
        for edge in list(fragment.edges):
            if edge.type != RelationKind.TESTS:
                continue
            key = (edge.target, edge.source, RelationKind.IS_TESTED_BY.value)
            if key not in seen:
                seen.add(key)
                fragment.edges.append(Edge(
                    source=edge.target, target=edge.source,
                    type=RelationKind.IS_TESTED_BY, weight=edge.weight,
                ))
        return fragment

    def _with_id(self, nd: dict[str, Any]) -> dict[str, Any]:
        if nd.get("id"):
            return nd
        name = nd.get("name")
        if not name:
            raise ValueError("Fragment node needs an id or a name")
        path = nd.get("file_path", "")
        if nd.get("type") == NodeType.TEST_CASE.value:
            nid = make_test_id(name, path, self.workspace_root)
        else:
            kind = nd.get("properties", {}).get("kind", "element")
            nid = node_id(kind, name, path, self.workspace_root)
        return {**nd, "id": nid}


def default_registry(workspace_root: str | None = None) -> ParserRegistry:
    registry = ParserRegistry()
    registry.register(JsonFragmentParser(workspace_root))
    return registry
