"""Impact propagation and test prioritization.

Propagation walks outgoing edges breadth-first from every changed node,
attenuating scores by depth and relation kind, and accumulates them on test
nodes.  The prioritizer ranks the normalized result and splits it into
high, medium and low buckets.
"""

from sikg.impact.prioritizer import TestPrioritizer
from sikg.impact.propagation import (
    attenuation,
    calculate_impacts,
    normalize_scores,
    propagate_change,
    propagate_parallel,
    relation_multiplier,
)

__all__ = [
    "TestPrioritizer",
    "attenuation",
    "calculate_impacts",
    "normalize_scores",
    "propagate_change",
    "propagate_parallel",
    "relation_multiplier",
]
