"""Reinforcement-learning refinement of impact scores.

The policy store owns learned state; the session applies it to fresh
propagation results and learns from the test outcomes that follow.
"""

from sikg.learning.feedback import (
    DefaultReward,
    FeedbackMetrics,
    Prediction,
    RewardFunction,
    build_predictions,
    classify,
    compute_metrics,
    learning_signals,
    outcome_value,
)
from sikg.learning.policy import PolicyState, PolicyStore, PolicyTransaction, pair_key
from sikg.learning.session import RLSession
from sikg.learning.weights import find_paths, update_edge_factors

__all__ = [
    "DefaultReward",
    "FeedbackMetrics",
    "PolicyState",
    "PolicyStore",
    "PolicyTransaction",
    "Prediction",
    "RLSession",
    "RewardFunction",
    "build_predictions",
    "classify",
    "compute_metrics",
    "find_paths",
    "learning_signals",
    "outcome_value",
    "pair_key",
    "update_edge_factors",
]
