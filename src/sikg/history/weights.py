"""Empirical edge weights from structural weight and historical evidence."""

from __future__ import annotations

from dataclasses import dataclass

from sikg import defaults


@dataclass
class EdgeEvidence:
    cochange_probability: float | None = None
    jaccard: float | None = None
    fault_correlation: float | None = None
    samples: int = 0

    @property
    def empty(self) -> bool:
        return self.samples == 0 or (
            self.cochange_probability is None
            and self.jaccard is None
            and self.fault_correlation is None
        )


def confidence(samples: int) -> float:
    return min(1.0, samples / defaults.CONFIDENCE_SAMPLE_SIZE)


def empirical_weight(base: float, evidence: EdgeEvidence) -> float:
    """Blend *base* with the evidence, weighted by sample confidence.

    Missing evidence components stand in as the base weight, so an edge with
    no history keeps its structural weight.  Always derived from the base, so
    repeated recalibration over the same history gives the same result.
    """
    if evidence.empty:
        return base

    def _or_base(v: float | None) -> float:
        return base if v is None else v

    blend_w = defaults.EMPIRICAL_BLEND
    blend = (
        blend_w["structural"] * base
        + blend_w["cochange"] * _or_base(evidence.cochange_probability)
        + blend_w["jaccard"] * _or_base(evidence.jaccard)
        + blend_w["fault"] * _or_base(evidence.fault_correlation)
    )
    c = confidence(evidence.samples)
    return round(max(0.0, min(1.0, (1 - c) * base + c * blend)), 6)
