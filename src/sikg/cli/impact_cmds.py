"""CLI commands: impact, categorize, feedback, evaluate."""

from __future__ import annotations

import argparse

from sikg.cli._helpers import _build_engine, _load_list, _out
from sikg.models import SemanticChange, TestResult


def _changes(path: str) -> list[SemanticChange]:
    items, _ = _load_list(path, "changes")
    return [SemanticChange.from_dict(c) for c in items]


def cmd_impact(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    changes = _changes(args.changes)
    run = engine.prioritize(
        changes, args.limit, use_rl=not args.no_rl, parallel=True if args.parallel else None,
    )
    return _out({
        "change_count": len(changes),
        "session_id": run.session_id,
        "rl_fallback": run.rl_fallback,
        "tests": [t.to_dict() for t in run.impacts],
    })


def cmd_categorize(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    run, buckets = engine.categorize(_changes(args.changes), use_rl=not args.no_rl)
    return _out({
        "session_id": run.session_id,
        "rl_fallback": run.rl_fallback,
        "counts": {name: len(tests) for name, tests in buckets.items()},
        **{name: [t.to_dict() for t in tests] for name, tests in buckets.items()},
    })


def cmd_feedback(args: argparse.Namespace) -> int:
    from sikg.graph import save_graph

    engine = _build_engine(args)
    items, envelope = _load_list(args.results, "results")
    results = [TestResult.from_dict(r) for r in items]
    changes = None
    if envelope.get("changes"):
        changes = [SemanticChange.from_dict(c) for c in envelope["changes"]]
    summary = engine.update_with_test_results(
        results,
        session_id=args.session_id or envelope.get("session_id"),
        changes=changes,
    )
    if args.save_graph:
        summary["graph"] = str(save_graph(engine.graph, args.graph))
    return _out(summary)


def _order_ids(items: list) -> list[str]:
    order: list[str] = []
    for item in items:
        if isinstance(item, str):
            order.append(item)
        elif isinstance(item, dict) and item.get("test_id"):
            order.append(item["test_id"])
        else:
            raise ValueError(f"Cannot read a test id from {item!r}")
    return order


def cmd_evaluate(args: argparse.Namespace) -> int:
    from sikg.metrics import apfd, selection_metrics

    order_items, _ = _load_list(args.order, "tests")
    order = _order_ids(order_items)
    items, _ = _load_list(args.results, "results")
    statuses = {r.test_id: r.status for r in (TestResult.from_dict(d) for d in items)}
    return _out({
        "apfd": apfd(order, statuses),
        "selection": selection_metrics(order, statuses),
    })
