"""CLI commands: history, policy, graph, serve."""

from __future__ import annotations

import argparse

from sikg.cli._helpers import _build_engine, _out


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

def cmd_history_ingest_git(args: argparse.Namespace) -> int:
    engine = _build_engine(args, with_graph=False)
    added = engine.ingest_git(args.repo, args.max_commits)
    return _out({"repo": args.repo, "commits_added": added})


def cmd_history_recalibrate(args: argparse.Namespace) -> int:
    from sikg.graph import save_graph

    engine = _build_engine(args)
    summary = engine.recalibrate()
    if args.save_graph:
        summary["graph"] = str(save_graph(engine.graph, args.graph))
    return _out(summary)


def cmd_history_stats(args: argparse.Namespace) -> int:
    engine = _build_engine(args, with_graph=False)
    engine.history.refresh()
    return _out(engine.history.stats())


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

def cmd_policy_show(args: argparse.Namespace) -> int:
    engine = _build_engine(args, with_graph=False)
    return _out(engine.rl.status())


def cmd_policy_reset(args: argparse.Namespace) -> int:
    engine = _build_engine(args, with_graph=False)
    state = engine.reset_policy()
    return _out({"reset": True, "version": state["version"], "parameters": state["parameters"]})


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

def cmd_graph_stats(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    return _out(engine.graph.stats())


def cmd_graph_ingest(args: argparse.Namespace) -> int:
    from sikg.graph import save_graph

    engine = _build_engine(args)
    summary = engine.ingest_files(args.files)
    summary["graph"] = str(save_graph(engine.graph, args.graph))
    summary["stats"] = engine.graph.stats()
    return _out(summary)


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from sikg.api import create_app

    app = create_app(db_path=args.db, graph_path=args.graph, config_path=args.config)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0
