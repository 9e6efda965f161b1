"""Single source of truth for shared constants and configuration defaults.

Every multiplier, threshold, or default that appears in more than one module
is defined here.  Constants that are truly local to one module stay in that
module.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------

MAX_TRAVERSAL_DEPTH = 5
MIN_IMPACT_THRESHOLD = 0.05
SCORE_DECIMALS = 4

# Attenuation multiplier per relation kind (unknown kinds fall back to the default)
RELATION_MULTIPLIERS: dict[str, float] = {
    "TESTS": 1.0,
    "IS_TESTED_BY": 1.0,
    "CALLS": 0.9,
    "INHERITS_FROM": 0.9,
    "MODIFIES": 0.9,
    "USES": 0.8,
    "BELONGS_TO": 0.8,
    "DEPENDS_ON": 0.7,
    "IMPORTS": 0.6,
}
DEFAULT_RELATION_MULTIPLIER = 0.5

# ---------------------------------------------------------------------------
# Prioritization buckets
# ---------------------------------------------------------------------------

HIGH_IMPACT_THRESHOLD = 0.7
LOW_IMPACT_THRESHOLD = 0.3

# ---------------------------------------------------------------------------
# Historical analysis
# ---------------------------------------------------------------------------

HISTORICAL_WINDOW_DAYS = 180
FAULT_HALF_LIFE_DAYS = 30.0
MAX_HISTORICAL_BOOST = 0.05
MISMATCHED_TYPE_BOOST_FACTOR = 0.5
MIN_COCHANGE_COUNT = 2
MIN_COCHANGE_FREQUENCY = 0.3
COCHANGE_EDGE_SCALE = 0.5
CONFIDENCE_SAMPLE_SIZE = 50
DEFAULT_MAX_COMMITS = 1000
TEST_RUN_HISTORY_LIMIT = 20

# Empirical blend of an edge weight (structural, co-change, jaccard, fault)
EMPIRICAL_BLEND: dict[str, float] = {
    "structural": 0.4,
    "cochange": 0.3,
    "jaccard": 0.2,
    "fault": 0.1,
}

# ---------------------------------------------------------------------------
# Reinforcement learning
# ---------------------------------------------------------------------------

LEARNING_RATE = 0.01
EXPLORATION_RATE = 0.1
EXPLORATION_MAGNITUDE = 0.05
MIN_EXPLORATION_RATE = 0.05
MAX_EXPLORATION_RATE = 0.3
SIGNIFICANCE_THRESHOLD = 0.2
CONSISTENT_PASS_RUNS = 3
MAX_PATH_LENGTH = 3
LEARNED_FACTOR_MIN = 0.5
LEARNED_FACTOR_MAX = 2.0
RL_TIMEOUT_SECONDS = 5.0
REWARD_EMA_ALPHA = 0.1
RECENT_SESSIONS_KEPT = 20

# Outcome value per test status
OUTCOME_VALUES: dict[str, float] = {
    "failed": 1.0,
    "passed": 0.0,
    "skipped": 0.5,
}

# Base boost per semantic change type, scaled by priority_boost_factor
SEMANTIC_TYPE_BOOSTS: dict[str, float] = {
    "BUG_FIX": 0.3,
    "FEATURE_ADDITION": 0.2,
    "REFACTORING_SIGNATURE": 0.25,
    "REFACTORING_LOGIC": 0.1,
    "DEPENDENCY_UPDATE": 0.15,
    "PERFORMANCE_OPT": 0.05,
    "UNKNOWN": 0.2,
}

# Policy parameters (selection_threshold defaults to 0.8 * high threshold)
POLICY_DEFAULTS: dict[str, float] = {
    "selection_threshold": HIGH_IMPACT_THRESHOLD * 0.8,
    "priority_boost_factor": 0.2,
    "diversity_weight": 0.1,
    "risk_tolerance": 0.6,
    "adaptation_rate": 0.1,
}
SELECTION_THRESHOLD_BOUNDS = (0.05, 0.95)
ADJUSTMENT_BOUNDS = (-0.5, 0.5)

# Reward shaping
FALSE_NEGATIVE_PENALTY = 1.0
FALSE_POSITIVE_PENALTY = 0.2

# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

PARALLEL_WORKERS = 4

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

STATE_DIR = ".sikg"
DEFAULT_DB_NAME = "state.db"
DEFAULT_GRAPH_NAME = "graph.json"
QUERY_LIMIT_SMALL = 200
QUERY_LIMIT_LARGE = 10_000
