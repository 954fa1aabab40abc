"""
Finger-on-lens detector.

When a fingertip covers the lens with the flash (or another light source)
behind it, the region of interest becomes:
  - Dominated by red tones (light transmitted through blood tissue).
  - Darker than an open scene.
  - Low in spatial variance (uniform colour, no edges).

The frame sampler records the outcome of this check with every sample so
that the recommendation engine can ask the user to cover the lens.  It never
rejects a frame on its own.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class FingerCheck:
    """Per-frame measurements behind a :meth:`FingerDetector.check` verdict."""

    brightness: float
    variance: float
    red_ratio: float
    covered: bool


class FingerDetector:
    """
    Heuristic detector: is the camera lens covered by a finger?

    Parameters
    ----------
    brightness_threshold:
        Maximum allowed *mean* pixel brightness (0 – 255).  Default: 100.
    variance_threshold:
        Maximum allowed *spatial variance* of green channel intensity.
        Default: 800.
    red_dominance:
        Minimum ratio ``mean_red / mean_green``.  Default: 1.05.
    """

    def __init__(
        self,
        brightness_threshold: float = 100.0,
        variance_threshold: float = 800.0,
        red_dominance: float = 1.05,
    ) -> None:
        self.brightness_threshold = brightness_threshold
        self.variance_threshold = variance_threshold
        self.red_dominance = red_dominance

    def check(self, roi: np.ndarray) -> FingerCheck:
        """
        Measure *roi* and decide whether it shows a covered lens.

        Parameters
        ----------
        roi:
            BGR pixel array (H × W × 3).  Any numeric dtype is accepted.
        """
        pixels = np.asarray(roi, dtype=np.float64)
        mean_b, mean_g, mean_r = (float(v) for v in pixels.reshape(-1, 3).mean(axis=0))
        brightness = (mean_r + mean_g + mean_b) / 3.0
        variance = float(pixels[:, :, 1].var())
        red_ratio = mean_r / (mean_g + 1e-6)

        covered = (
            brightness < self.brightness_threshold
            and variance < self.variance_threshold
            and red_ratio >= self.red_dominance
        )
        return FingerCheck(brightness, variance, red_ratio, covered)

    def is_finger(self, roi: np.ndarray) -> bool:
        """Return *True* if *roi* looks like a finger covering the lens."""
        return self.check(roi).covered
