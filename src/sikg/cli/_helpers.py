"""Shared CLI helpers."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

from sikg import defaults


def _default_db() -> str:
    return str(Path(defaults.STATE_DIR) / defaults.DEFAULT_DB_NAME)


def _default_graph() -> str:
    return str(Path(defaults.STATE_DIR) / defaults.DEFAULT_GRAPH_NAME)


def _out(data: Any) -> int:
    print(json.dumps(data, indent=2, default=str))
    if isinstance(data, dict) and "error" in data:
        return 1
    return 0


def _load_json(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise ValueError(f"File not found: {path}")
    try:
        return json.loads(p.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"{path}: invalid JSON ({e})") from e


def _load_list(path: str, key: str) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Accept either a bare JSON list or an object holding the list under *key*.

    Returns the list and the enclosing object (empty for a bare list).
    """
    data = _load_json(path)
    if isinstance(data, list):
        return data, {}
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key], data
    raise ValueError(f"{path}: expected a list or an object with '{key}'")


def _build_engine(args: argparse.Namespace, with_graph: bool = True):
    from sikg.adapters.sqlite_store import SqliteStore
    from sikg.config import load_config
    from sikg.engine import SikgEngine
    from sikg.graph import GraphStore, load_graph

    config = load_config(args.config)
    graph_path = getattr(args, "graph", None)
    if with_graph and graph_path:
        graph = load_graph(graph_path, config.workspace_root)
    else:
        graph = GraphStore(config.workspace_root)
    return SikgEngine(config, graph, SqliteStore(args.db))
