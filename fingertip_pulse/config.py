"""
Session configuration.

All tunables of a measurement session live in one frozen dataclass that is
validated on construction, so host misuse (a zero-length window, an
inverted band, a band above Nyquist) fails immediately rather than
surfacing later as a mysterious signal problem.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Tuple

from .diagnostics import DiagnosticThresholds
from .exceptions import ConfigurationError
from .frame_sampler import CHANNELS
from .periodicity import EstimationStrategy

# Host-facing camelCase names accepted by SessionConfig.from_mapping()
_ALIASES = {
    "acquisitionWindowSeconds": "acquisition_window_seconds",
    "expectedFrameRate": "expected_frame_rate",
    "minSamplesForEstimate": "min_samples_for_estimate",
    "physiologicalBandHz": "physiological_band_hz",
}


@dataclass(frozen=True)
class SessionConfig:
    """
    Parameters
    ----------
    acquisition_window_seconds:
        Length of one measurement attempt.  Together with
        ``expected_frame_rate`` it fixes the sample buffer capacity.
    expected_frame_rate:
        Nominal frame rate of the host camera (Hz).
    min_samples_for_estimate:
        Warm-up threshold: no heart rate is reported below this many samples.
    physiological_band_hz:
        ``(low, high)`` band in Hz (default 0.67 – 4.0 Hz = 40 – 240 BPM).
    roi_fraction:
        Fraction of each frame dimension sampled around the centre.
    channel:
        Colour channel sampled (``"green"``, ``"red"`` or ``"blue"``).
    saturation_level:
        Pixel value considered saturated.
    detect_finger:
        Record finger-coverage with every sample.
    filter_order, detrend_order, min_duration_seconds, jitter_tolerance:
        Signal conditioner settings.
    min_spectral_seconds, min_peak_prominence, agreement_bpm, strategy:
        Periodicity analyzer settings.
    usability_floor, full_credit_fraction:
        Quality scorer settings.  ``full_credit_fraction`` is the share of
        the buffer capacity that earns full sample-sufficiency credit.
    thresholds:
        Recommendation triggers.
    """

    acquisition_window_seconds: float = 30.0
    expected_frame_rate: float = 30.0
    min_samples_for_estimate: int = 150
    physiological_band_hz: Tuple[float, float] = (0.67, 4.0)

    roi_fraction: float = 0.3
    channel: str = "green"
    saturation_level: float = 255.0
    detect_finger: bool = True

    filter_order: int = 4
    detrend_order: int = 2
    min_duration_seconds: float = 3.0
    jitter_tolerance: float = 0.2

    min_spectral_seconds: float = 5.0
    min_peak_prominence: float = 0.5
    agreement_bpm: float = 5.0
    strategy: EstimationStrategy = EstimationStrategy.ENSEMBLE

    usability_floor: float = 0.15
    full_credit_fraction: float = 0.5
    thresholds: DiagnosticThresholds = field(default_factory=DiagnosticThresholds)

    def __post_init__(self) -> None:
        try:
            band = tuple(float(v) for v in self.physiological_band_hz)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"physiological_band_hz must be two numbers: {exc}") from exc
        object.__setattr__(self, "physiological_band_hz", band)
        if isinstance(self.strategy, str):
            try:
                object.__setattr__(self, "strategy", EstimationStrategy(self.strategy))
            except ValueError as exc:
                raise ConfigurationError(f"unknown strategy {self.strategy!r}") from exc
        self._validate()

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        """Maximum number of samples held by a session."""
        return int(math.ceil(self.acquisition_window_seconds * self.expected_frame_rate))

    @property
    def full_credit_samples(self) -> int:
        return max(
            self.min_samples_for_estimate,
            int(math.ceil(self.capacity * self.full_credit_fraction)),
        )

    @property
    def band_bpm(self) -> Tuple[float, float]:
        low, high = self.physiological_band_hz
        return low * 60.0, high * 60.0

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "SessionConfig":
        """Build a config from host settings (camelCase or snake_case keys)."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in mapping.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(f"unknown configuration key {key!r}")
            kwargs[name] = value
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        window = self.acquisition_window_seconds
        fps = self.expected_frame_rate
        if not (_finite(window) and window > 0):
            raise ConfigurationError(f"acquisition_window_seconds must be > 0, got {window!r}")
        if not (_finite(fps) and fps > 0):
            raise ConfigurationError(f"expected_frame_rate must be > 0, got {fps!r}")

        if len(self.physiological_band_hz) != 2:
            raise ConfigurationError("physiological_band_hz must be a (low, high) pair")
        low, high = self.physiological_band_hz
        if not (_finite(low) and _finite(high) and 0 < low < high):
            raise ConfigurationError(
                f"physiological_band_hz must satisfy 0 < low < high, got {self.physiological_band_hz}"
            )
        if high >= fps / 2.0:
            raise ConfigurationError(
                f"band upper edge {high} Hz must be below Nyquist ({fps / 2.0} Hz)"
            )

        min_samples = self.min_samples_for_estimate
        if isinstance(min_samples, bool) or not isinstance(min_samples, int) or min_samples < 2:
            raise ConfigurationError(f"min_samples_for_estimate must be an int >= 2, got {min_samples!r}")
        if min_samples > self.capacity:
            raise ConfigurationError(
                f"min_samples_for_estimate ({min_samples}) exceeds buffer capacity ({self.capacity})"
            )

        if not 0 < self.roi_fraction <= 1:
            raise ConfigurationError(f"roi_fraction must be in (0, 1], got {self.roi_fraction!r}")
        if self.channel not in CHANNELS:
            raise ConfigurationError(f"channel must be one of {sorted(CHANNELS)}, got {self.channel!r}")
        if not self.saturation_level > 0:
            raise ConfigurationError("saturation_level must be > 0")
        if self.filter_order < 1 or self.detrend_order < 0:
            raise ConfigurationError("filter_order must be >= 1 and detrend_order >= 0")
        if self.min_duration_seconds <= 0 or self.min_spectral_seconds <= 0:
            raise ConfigurationError("minimum durations must be > 0")
        if self.jitter_tolerance < 0 or self.agreement_bpm < 0 or self.min_peak_prominence < 0:
            raise ConfigurationError("jitter_tolerance, agreement_bpm and min_peak_prominence must be >= 0")
        if not 0 <= self.usability_floor < 1:
            raise ConfigurationError(f"usability_floor must be in [0, 1), got {self.usability_floor!r}")
        if not 0 < self.full_credit_fraction <= 1:
            raise ConfigurationError(
                f"full_credit_fraction must be in (0, 1], got {self.full_credit_fraction!r}"
            )
        if not isinstance(self.strategy, EstimationStrategy):
            raise ConfigurationError(f"unknown strategy {self.strategy!r}")


def _finite(value: Any) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False
