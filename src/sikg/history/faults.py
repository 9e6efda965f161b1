"""Fault correlation between changed nodes and failing tests."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from sikg.models import TestResult, parse_iso

_SECONDS_PER_DAY = 86_400


@dataclass
class FaultStats:
    occurrences: int = 0
    runs: int = 0
    recency_weight: float = 0.0
    semantic_types: set[str] = field(default_factory=set)

    @property
    def frequency(self) -> float:
        return self.occurrences / (self.runs + 1)

    def to_dict(self) -> dict:
        return {
            "occurrences": self.occurrences,
            "runs": self.runs,
            "recency_weight": round(self.recency_weight, 4),
            "frequency": round(self.frequency, 4),
            "semantic_types": sorted(self.semantic_types),
        }


def recency(timestamp: str, now: datetime, half_life_days: float) -> float:
    days = max(0.0, (now - parse_iso(timestamp)).total_seconds() / _SECONDS_PER_DAY)
    return math.exp(-days / half_life_days)


def correlate_faults(
    results: Iterable[TestResult],
    now: datetime,
    half_life_days: float,
) -> dict[tuple[str, str], FaultStats]:
    """Aggregate results into ``(changed_node_id, test_id) -> FaultStats``.

    Every result counts as a run for each node it names; failures also add
    an occurrence, a decayed recency weight and the change's semantic type.
    """
    table: dict[tuple[str, str], FaultStats] = {}
    for r in results:
        for node_id in r.changed_node_ids:
            stats = table.setdefault((node_id, r.test_id), FaultStats())
            stats.runs += 1
            if r.failed:
                stats.occurrences += 1
                stats.recency_weight += recency(r.timestamp, now, half_life_days)
                stype = r.change_types.get(node_id)
                if stype:
                    stats.semantic_types.add(stype)
    return table
