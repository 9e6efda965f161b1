"""Historical weight subsystem: co-change, fault correlation, recalibration."""

from sikg.history.analyzer import HistoryAnalyzer
from sikg.history.cochange import CoChangeStats, cochange_edges, compute_cochange, is_cochange_edge
from sikg.history.faults import FaultStats, correlate_faults
from sikg.history.weights import EdgeEvidence, empirical_weight

__all__ = [
    "CoChangeStats",
    "EdgeEvidence",
    "FaultStats",
    "HistoryAnalyzer",
    "cochange_edges",
    "compute_cochange",
    "correlate_faults",
    "empirical_weight",
    "is_cochange_edge",
]
