"""
Quality & confidence scoring.

Final confidence is the product of independent factors, each in 0 – 1:

* periodicity - the reconciled estimator confidence (spectral purity,
  peak prominence, inter-beat interval consistency);
* sample sufficiency - accumulated samples relative to the acquisition
  window (never below one half, full credit at ``full_credit_samples``);
* cleanliness - penalises out-of-band (motion) energy;
* clipping - the fraction of pixels that are not saturated or black.

Every factor is non-decreasing in the property it measures, so confidence
is monotone in periodicity strength and in sample count.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import numpy as np

from .diagnostics import SIGNAL_DEFECTS, Issue, SignalDiagnostics
from .periodicity import Estimate
from .signal_conditioner import ConditionedSeries

logger = logging.getLogger(__name__)


class Quality(str, Enum):
    POOR = "POOR"
    FAIR = "FAIR"
    GOOD = "GOOD"
    EXCELLENT = "EXCELLENT"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {Quality.POOR: 0, Quality.FAIR: 1, Quality.GOOD: 2, Quality.EXCELLENT: 3}

# (lower bound inclusive, tier), best first
QUALITY_BANDS = (
    (0.85, Quality.EXCELLENT),
    (0.65, Quality.GOOD),
    (0.35, Quality.FAIR),
)


def quality_for_confidence(confidence: float) -> Quality:
    for bound, quality in QUALITY_BANDS:
        if confidence >= bound:
            return quality
    return Quality.POOR


@dataclass(frozen=True)
class Score:
    confidence: float
    quality: Quality
    usable: bool


class QualityScorer:
    """
    Parameters
    ----------
    full_credit_samples:
        Sample count at which the sufficiency factor reaches 1.
    usability_floor:
        Confidence below which no heart rate is reported.
    noise_dead_zone:
        Noise level up to which no cleanliness penalty is applied.
    noise_ceiling:
        Noise level at which the cleanliness factor reaches 0.
    """

    def __init__(
        self,
        full_credit_samples: int,
        usability_floor: float = 0.15,
        noise_dead_zone: float = 0.5,
        noise_ceiling: float = 0.95,
    ) -> None:
        self.full_credit_samples = full_credit_samples
        self.usability_floor = usability_floor
        self.noise_dead_zone = noise_dead_zone
        self.noise_ceiling = noise_ceiling

    def score(
        self,
        estimate: Optional[Estimate],
        series: ConditionedSeries,
        diagnostics: SignalDiagnostics,
        issues: Iterable[Issue] = (),
    ) -> Score:
        if estimate is None:
            return Score(0.0, Quality.POOR, False)

        sufficiency = min(1.0, diagnostics.sample_count / self.full_credit_samples)
        cleanliness = 1.0 - (series.noise_level - self.noise_dead_zone) / (
            self.noise_ceiling - self.noise_dead_zone
        )
        confidence = (
            estimate.confidence
            * (0.5 + 0.5 * sufficiency)
            * float(np.clip(cleanliness, 0.0, 1.0))
            * float(np.clip(1.0 - diagnostics.clipped_fraction, 0.0, 1.0))
        )
        confidence = float(np.clip(confidence, 0.0, 1.0))

        quality = quality_for_confidence(confidence)
        if quality.rank > Quality.FAIR.rank and SIGNAL_DEFECTS.intersection(issues):
            quality = Quality.FAIR

        logger.debug(
            "Scored estimate: periodicity=%.3f sufficiency=%.3f noise=%.3f -> %.3f (%s)",
            estimate.confidence, sufficiency, series.noise_level, confidence, quality.value,
        )
        return Score(confidence, quality, confidence >= self.usability_floor)
