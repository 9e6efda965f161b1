"""Argparse parser definition for the SIKG CLI."""

from __future__ import annotations

import argparse

from sikg import defaults
from sikg.cli._helpers import _default_db, _default_graph


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sikg",
        description="Semantic impact analysis for regression test selection and prioritization",
    )
    parser.add_argument("--db", default=_default_db(), help="SQLite database path")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    sub = parser.add_subparsers(dest="command")

    _register_impact_commands(sub)
    _register_history_commands(sub)
    _register_policy_commands(sub)
    _register_graph_commands(sub)
    _register_server_commands(sub)

    return parser


def _register_impact_commands(sub: argparse._SubParsersAction) -> None:
    # -- impact --
    p = sub.add_parser("impact", help="Rank tests affected by a set of semantic changes")
    p.add_argument("--graph", default=_default_graph(), help="Graph JSON file")
    p.add_argument("--changes", required=True, help="JSON file with semantic changes")
    p.add_argument("--limit", type=int)
    p.add_argument("--no-rl", action="store_true", help="Skip policy refinement")
    p.add_argument("--parallel", action="store_true", help="Propagate changes in parallel")

    # -- categorize --
    p = sub.add_parser("categorize", help="Bucket affected tests into high, medium and low impact")
    p.add_argument("--graph", default=_default_graph())
    p.add_argument("--changes", required=True)
    p.add_argument("--no-rl", action="store_true")

    # -- feedback --
    p = sub.add_parser("feedback", help="Feed executed test results back into history and policy")
    p.add_argument("--graph", default=_default_graph())
    p.add_argument("--results", required=True, help="JSON file with test results")
    p.add_argument("--session-id", help="Refinement session answered by these results")
    p.add_argument("--save-graph", action="store_true", help="Write updated edge factors back")

    # -- evaluate --
    p = sub.add_parser("evaluate", help="APFD and selection metrics for an execution order")
    p.add_argument("--order", required=True, help="JSON list of test ids or 'impact' output")
    p.add_argument("--results", required=True)


def _register_history_commands(sub: argparse._SubParsersAction) -> None:
    hist_p = sub.add_parser("history", help="Commit and test history")
    hist_sub = hist_p.add_subparsers(dest="history_cmd")

    p = hist_sub.add_parser("ingest-git", help="Record commits from a git repository")
    p.add_argument("--repo", default=".")
    p.add_argument("--max-commits", type=int, default=defaults.DEFAULT_MAX_COMMITS)

    p = hist_sub.add_parser("recalibrate", help="Recompute edge weights from history")
    p.add_argument("--graph", default=_default_graph())
    p.add_argument("--save-graph", action="store_true")

    hist_sub.add_parser("stats", help="Co-change and fault statistics")


def _register_policy_commands(sub: argparse._SubParsersAction) -> None:
    pol_p = sub.add_parser("policy", help="Learned prioritization policy")
    pol_sub = pol_p.add_subparsers(dest="policy_cmd")
    pol_sub.add_parser("show", help="Show policy parameters and learning status")
    pol_sub.add_parser("reset", help="Discard learned policy state")


def _register_graph_commands(sub: argparse._SubParsersAction) -> None:
    graph_p = sub.add_parser("graph", help="Knowledge graph maintenance")
    graph_sub = graph_p.add_subparsers(dest="graph_cmd")

    p = graph_sub.add_parser("stats", help="Node and edge counts")
    p.add_argument("--graph", default=_default_graph())

    p = graph_sub.add_parser("ingest", help="Merge graph fragment files into the graph")
    p.add_argument("--graph", default=_default_graph())
    p.add_argument("files", nargs="+")


def _register_server_commands(sub: argparse._SubParsersAction) -> None:
    # -- serve --
    p = sub.add_parser("serve", help="Start HTTP API server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=9877)
    p.add_argument("--graph", default=_default_graph())
