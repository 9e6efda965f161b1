"""Effectiveness metrics for a prioritized or selected test run."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from sikg.models import TestStatus


def _interpret(apfd: float) -> str:
    if apfd >= 0.9:
        return "excellent"
    if apfd >= 0.75:
        return "good"
    if apfd >= 0.5:
        return "fair"
    return "poor"


def apfd(order: Sequence[str], statuses: Mapping[str, TestStatus | str]) -> dict[str, Any]:
    """Average Percentage of Faults Detected for executing *order*.

    ``APFD = 1 - sum(positions) / (n * m) + 1 / (2n)`` with 1-based positions
    of failing tests.  Tests with a status but missing from *order* run after
    it.  A run without failures scores 1.0.
    """
    executed = list(dict.fromkeys(order))
    seen = set(executed)
    executed += [t for t in statuses if t not in seen]
    n = len(executed)
    positions = [
        i for i, t in enumerate(executed, start=1)
        if TestStatus(statuses.get(t, TestStatus.PASSED)) == TestStatus.FAILED
    ]
    m = len(positions)
    if n == 0 or m == 0:
        return {"apfd": 1.0, "total_tests": n, "total_faults": 0, "fault_positions": [],
                "early_detection_rate": 0.0, "interpretation": "no faults"}
    value = 1 - sum(positions) / (n * m) + 1 / (2 * n)
    value = max(0.0, min(1.0, value))
    early = sum(1 for p in positions if p <= n / 2)
    return {
        "apfd": round(value, 4),
        "total_tests": n,
        "total_faults": m,
        "fault_positions": positions,
        "average_fault_position": round(sum(positions) / m, 4),
        "early_detection_rate": round(early / m, 4),
        "interpretation": _interpret(value),
    }


def selection_metrics(
    selected: Iterable[str],
    statuses: Mapping[str, TestStatus | str],
) -> dict[str, float]:
    """Precision, recall and F1 of *selected* against the failing tests."""
    chosen = set(selected)
    failing = {t for t, s in statuses.items() if TestStatus(s) == TestStatus.FAILED}
    hits = len(chosen & failing)
    precision = hits / len(chosen) if chosen else 0.0
    recall = hits / len(failing) if failing else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    total = len(statuses)
    return {
        "selected": len(chosen),
        "failing": len(failing),
        "precision": round(precision, 4),
        "recall": round(recall, 4),
        "f1_score": round(f1, 4),
        "reduction": round(1 - len(chosen) / total, 4) if total else 0.0,
    }
