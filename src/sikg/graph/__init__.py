"""Knowledge graph storage and JSON interchange."""

from sikg.graph.store import GraphStore, load_graph, save_graph

__all__ = [
    "GraphStore",
    "load_graph",
    "save_graph",
]
