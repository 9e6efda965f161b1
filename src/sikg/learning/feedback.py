"""Feedback evaluation: outcomes, classification, metrics, reward, learning signals."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol, Sequence

from sikg import defaults
from sikg.models import TestResult, TestStatus

TRUE_POSITIVE = "true_positive"
FALSE_POSITIVE = "false_positive"
TRUE_NEGATIVE = "true_negative"
FALSE_NEGATIVE = "false_negative"
INCONCLUSIVE = "inconclusive"


def outcome_value(status: TestStatus | str) -> float:
    return defaults.OUTCOME_VALUES[TestStatus(status).value]


@dataclass
class Prediction:
    test_id: str
    predicted: float
    outcome: float
    selected: bool
    classification: str

    @property
    def error(self) -> float:
        return self.predicted - self.outcome


def classify(predicted: float, outcome: float, threshold: float) -> str:
    selected = predicted >= threshold
    if outcome == defaults.OUTCOME_VALUES["skipped"]:
        return INCONCLUSIVE
    failed = outcome >= defaults.OUTCOME_VALUES["failed"]
    if selected:
        return TRUE_POSITIVE if failed else FALSE_POSITIVE
    return FALSE_NEGATIVE if failed else TRUE_NEGATIVE


def build_predictions(
    results: Sequence[TestResult],
    predicted: dict[str, float],
    threshold: float,
) -> list[Prediction]:
    """Pair each result with its predicted score (0 when the test was never scored)."""
    preds: list[Prediction] = []
    for r in results:
        score = r.predicted_impact if r.predicted_impact is not None else predicted.get(r.test_id, 0.0)
        outcome = outcome_value(r.status)
        preds.append(Prediction(
            test_id=r.test_id,
            predicted=score,
            outcome=outcome,
            selected=score >= threshold,
            classification=classify(score, outcome, threshold),
        ))
    return preds


@dataclass
class FeedbackMetrics:
    true_positives: int = 0
    false_positives: int = 0
    true_negatives: int = 0
    false_negatives: int = 0
    inconclusive: int = 0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    fault_detection_rate: float = 0.0
    accuracy: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_metrics(predictions: Sequence[Prediction]) -> FeedbackMetrics:
    m = FeedbackMetrics()
    for p in predictions:
        if p.classification == TRUE_POSITIVE:
            m.true_positives += 1
        elif p.classification == FALSE_POSITIVE:
            m.false_positives += 1
        elif p.classification == TRUE_NEGATIVE:
            m.true_negatives += 1
        elif p.classification == FALSE_NEGATIVE:
            m.false_negatives += 1
        else:
            m.inconclusive += 1

    selected = m.true_positives + m.false_positives
    failures = m.true_positives + m.false_negatives
    conclusive = selected + m.true_negatives + m.false_negatives
    m.precision = m.true_positives / selected if selected else 0.0
    m.recall = m.true_positives / failures if failures else 0.0
    if m.precision + m.recall:
        m.f1_score = 2 * m.precision * m.recall / (m.precision + m.recall)
    m.fault_detection_rate = m.true_positives / selected if selected else 0.0
    m.accuracy = (m.true_positives + m.true_negatives) / conclusive if conclusive else 0.0
    return m


# ---------------------------------------------------------------------------
# Reward shaping
# ---------------------------------------------------------------------------

class RewardFunction(Protocol):
    def __call__(self, metrics: FeedbackMetrics, predictions: Sequence[Prediction]) -> float: ...


@dataclass
class DefaultReward:
    """+1 per detected failure, penalties for misses and wasted selections."""

    false_negative_penalty: float = defaults.FALSE_NEGATIVE_PENALTY
    false_positive_penalty: float = defaults.FALSE_POSITIVE_PENALTY

    def __call__(self, metrics: FeedbackMetrics, predictions: Sequence[Prediction]) -> float:
        conclusive = len(predictions) - metrics.inconclusive
        if conclusive <= 0:
            return 0.0
        raw = (
            metrics.true_positives
            - self.false_negative_penalty * metrics.false_negatives
            - self.false_positive_penalty * metrics.false_positives
        )
        return raw / conclusive


# ---------------------------------------------------------------------------
# Learning signals
# ---------------------------------------------------------------------------

def learning_signals(
    metrics: FeedbackMetrics,
    predictions: Sequence[Prediction],
    significance: float = defaults.SIGNIFICANCE_THRESHOLD,
    max_weight_signals: int = 5,
) -> list[dict[str, Any]]:
    signals: list[dict[str, Any]] = []
    if metrics.f1_score < 0.6:
        signals.append({
            "type": "POLICY_ADJUSTMENT",
            "direction": "INCREASE",
            "target": "selection_sensitivity",
            "strength": round(1.0 - metrics.f1_score, 4),
        })
    if metrics.precision < 0.5 and metrics.recall > 0.8:
        signals.append({
            "type": "THRESHOLD_CHANGE", "direction": "INCREASE",
            "target": "selection_threshold", "strength": 0.8,
        })
    elif metrics.recall < 0.5 and metrics.precision > 0.8:
        signals.append({
            "type": "THRESHOLD_CHANGE", "direction": "DECREASE",
            "target": "selection_threshold", "strength": 0.8,
        })

    errors = sorted(
        (p for p in predictions
         if p.classification != INCONCLUSIVE and abs(p.error) > significance),
        key=lambda p: abs(p.error), reverse=True,
    )
    for p in errors[:max_weight_signals]:
        signals.append({
            "type": "WEIGHT_UPDATE",
            "direction": "DECREASE" if p.error > 0 else "INCREASE",
            "target": p.test_id,
            "strength": round(min(1.0, abs(p.error)), 4),
        })
    return signals
