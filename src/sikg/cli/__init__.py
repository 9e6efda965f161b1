"""CLI for SIKG: grouped subcommands.

Commands:
  sikg impact
  sikg categorize
  sikg feedback
  sikg evaluate
  sikg history {ingest-git, recalibrate, stats}
  sikg policy {show, reset}
  sikg graph {stats, ingest}
  sikg serve
"""

from __future__ import annotations

import logging
import sys

from sikg.cli._helpers import _out
from sikg.cli._parser import build_parser
from sikg.cli.admin import (
    cmd_graph_ingest,
    cmd_graph_stats,
    cmd_history_ingest_git,
    cmd_history_recalibrate,
    cmd_history_stats,
    cmd_policy_reset,
    cmd_policy_show,
    cmd_serve,
)
from sikg.cli.impact_cmds import (
    cmd_categorize,
    cmd_evaluate,
    cmd_feedback,
    cmd_impact,
)
from sikg.observability import setup_logging

log = logging.getLogger("sikg.cli")


# ===================================================================
# Dispatch
# ===================================================================

_DISPATCH = {
    ("impact", None): cmd_impact,
    ("categorize", None): cmd_categorize,
    ("feedback", None): cmd_feedback,
    ("evaluate", None): cmd_evaluate,
    ("history", "ingest-git"): cmd_history_ingest_git,
    ("history", "recalibrate"): cmd_history_recalibrate,
    ("history", "stats"): cmd_history_stats,
    ("policy", "show"): cmd_policy_show,
    ("policy", "reset"): cmd_policy_reset,
    ("graph", "stats"): cmd_graph_stats,
    ("graph", "ingest"): cmd_graph_ingest,
    ("serve", None): cmd_serve,
}

# Map subcmd attr names to the dispatch key
_SUBCMD_ATTR = {
    "history": "history_cmd",
    "policy": "policy_cmd",
    "graph": "graph_cmd",
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level)

    # Resolve dispatch key
    subcmd_attr = _SUBCMD_ATTR.get(args.command)
    subcmd = getattr(args, subcmd_attr, None) if subcmd_attr else None
    handler = _DISPATCH.get((args.command, subcmd))
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except ValueError as e:
        log.debug("Command %s failed: %s", args.command, e)
        return _out({"error": str(e)})
