"""
Signal diagnostics and the failure modes derived from them.

A :class:`SignalDiagnostics` record is assembled once per
``compute_estimate`` call from the raw sample buffer and, when available,
the conditioned series.  :func:`detect_issues` turns it into a list of
:class:`Issue` values which drive both quality capping and the
recommendation strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional


class Issue(IntEnum):
    """Detected failure modes.  The integer value is the reporting priority."""

    LOW_AMPLITUDE        = 1
    HIGH_VARIANCE        = 2
    INSUFFICIENT_SAMPLES = 3
    CLIPPING             = 4
    FINGER_NOT_DETECTED  = 5
    NO_PULSE             = 6
    PROCESSING_ERROR     = 7


# Issues describing a defective signal rather than missing data.
SIGNAL_DEFECTS = frozenset({Issue.LOW_AMPLITUDE, Issue.HIGH_VARIANCE, Issue.CLIPPING})


@dataclass(frozen=True)
class DiagnosticThresholds:
    """
    Trigger levels for each :class:`Issue`.

    Parameters
    ----------
    min_mean_level:
        Mean channel intensity (0 – 255) below which the frame is considered
        too dark to carry a pulse.
    min_pulse_amplitude:
        Standard deviation of the band-passed signal, in raw intensity units,
        below which the pulsatile component is considered too weak.
    max_noise_level:
        Out-of-band RMS fraction above which the finger is considered to be
        moving.
    max_clipped_fraction:
        Fraction of saturated or black ROI pixels above which the channel is
        considered clipped.
    max_uncovered_fraction:
        Fraction of samples without a detected finger above which the user
        is asked to cover the lens.
    """

    min_mean_level: float = 20.0
    min_pulse_amplitude: float = 0.05
    max_noise_level: float = 0.6
    max_clipped_fraction: float = 0.25
    max_uncovered_fraction: float = 0.5


@dataclass(frozen=True)
class SignalDiagnostics:
    sample_count: int
    required_samples: int
    duration: float = 0.0
    mean_level: float = 0.0
    pulse_amplitude: Optional[float] = None
    noise_level: Optional[float] = None
    clipped_fraction: float = 0.0
    uncovered_fraction: float = 0.0
    dropped_frames: int = 0
    insufficient: bool = False
    pulse_detected: bool = True
    processing_error: bool = False

    @property
    def signal_strength(self) -> float:
        """Pulse amplitude mapped onto 0 – 1 (10 intensity units = full scale)."""
        if self.pulse_amplitude is None:
            return 0.0
        return min(1.0, self.pulse_amplitude / 10.0)


def detect_issues(
    diagnostics: SignalDiagnostics,
    thresholds: DiagnosticThresholds,
) -> List[Issue]:
    """Return the triggered issues in priority order."""
    issues: List[Issue] = []

    if diagnostics.sample_count > 0 and (
        diagnostics.mean_level < thresholds.min_mean_level
        or (
            diagnostics.pulse_amplitude is not None
            and diagnostics.pulse_amplitude < thresholds.min_pulse_amplitude
        )
    ):
        issues.append(Issue.LOW_AMPLITUDE)

    if (
        diagnostics.noise_level is not None
        and diagnostics.noise_level > thresholds.max_noise_level
    ):
        issues.append(Issue.HIGH_VARIANCE)

    if diagnostics.insufficient or diagnostics.sample_count < diagnostics.required_samples:
        issues.append(Issue.INSUFFICIENT_SAMPLES)

    if diagnostics.clipped_fraction > thresholds.max_clipped_fraction:
        issues.append(Issue.CLIPPING)

    if diagnostics.uncovered_fraction > thresholds.max_uncovered_fraction:
        issues.append(Issue.FINGER_NOT_DETECTED)

    if not diagnostics.insufficient and not diagnostics.pulse_detected:
        issues.append(Issue.NO_PULSE)

    if diagnostics.processing_error:
        issues.append(Issue.PROCESSING_ERROR)

    return sorted(issues)
