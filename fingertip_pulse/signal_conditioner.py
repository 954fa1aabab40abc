"""
Signal conditioner.

Algorithm
---------
1. Estimate the sample rate from the median timestamp spacing; when the
   spacing jitters by more than ``jitter_tolerance`` resample linearly onto a
   uniform grid.
2. Remove slow polynomial drift (finger pressure, ambient light changes).
3. Apply a zero-phase Butterworth bandpass filter over the physiological
   band (default 0.67 – 4.0 Hz = 40 – 240 BPM).
4. Normalise to zero mean / unit variance so series recorded under
   different lighting are comparable.

The conditioned series is derived on demand from the raw samples and is
never stored; conditioning the same input twice gives the same output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple, Union

import numpy as np
from numpy.polynomial import polynomial as P
from scipy.signal import butter, sosfiltfilt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsufficientData:
    """Marker returned instead of a series when there is not enough signal."""

    reason: str
    sample_count: int
    duration: float


@dataclass(frozen=True, eq=False)
class ConditionedSeries:
    """
    A uniformly sampled, band-limited, normalised pulse series.

    Attributes
    ----------
    values:
        Normalised samples (zero mean, unit variance; all zeros when flat).
    sample_rate:
        Sampling rate in Hz.
    duration:
        Time span covered by the series in seconds.
    resampled:
        Whether the input was interpolated onto a uniform grid.
    mean_level:
        Mean raw intensity (the DC level).
    pulse_amplitude:
        Standard deviation of the band-passed signal in raw intensity units.
    noise_level:
        RMS fraction of the detrended signal lying outside the band (0 – 1).
    """

    values: np.ndarray
    sample_rate: float
    duration: float
    resampled: bool
    mean_level: float
    pulse_amplitude: float
    noise_level: float

    def __len__(self) -> int:
        return len(self.values)

    @property
    def flat(self) -> bool:
        return self.pulse_amplitude <= 0.0


ConditionResult = Union[ConditionedSeries, InsufficientData]


class SignalConditioner:
    """
    Parameters
    ----------
    band_hz:
        ``(low, high)`` passband edges in Hz.
    filter_order:
        Order of the Butterworth filter (default 4).
    detrend_order:
        Degree of the polynomial drift removed before filtering (default 2).
    min_duration:
        Shortest series, in seconds, that will be conditioned (default 3 s).
    jitter_tolerance:
        Relative standard deviation of the timestamp spacing above which the
        series is resampled (default 0.2).
    """

    def __init__(
        self,
        band_hz: Tuple[float, float] = (0.67, 4.0),
        filter_order: int = 4,
        detrend_order: int = 2,
        min_duration: float = 3.0,
        jitter_tolerance: float = 0.2,
    ) -> None:
        self.band_hz = band_hz
        self.filter_order = filter_order
        self.detrend_order = detrend_order
        self.min_duration = min_duration
        self.jitter_tolerance = jitter_tolerance
        self._filters: Dict[float, np.ndarray] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def condition(
        self,
        timestamps: Sequence[float],
        values: Sequence[float],
    ) -> ConditionResult:
        """Condition a raw ``(timestamps, values)`` series."""
        t = np.asarray(timestamps, dtype=np.float64)
        x = np.asarray(values, dtype=np.float64)
        n = len(x)

        if n < 2:
            return InsufficientData("too few samples", n, 0.0)

        duration = float(t[-1] - t[0])
        if duration < self.min_duration:
            return InsufficientData(
                f"series spans {duration:.2f} s, need {self.min_duration:.2f} s",
                n,
                duration,
            )

        dt = np.diff(t)
        step = float(np.median(dt))
        if step <= 0.0:
            return InsufficientData("degenerate timestamps", n, duration)
        fs = 1.0 / step
        if self.band_hz[0] >= fs / 2.0:
            return InsufficientData(
                f"sample rate {fs:.1f} Hz too low for the band", n, duration
            )

        resampled = float(np.std(dt)) / step > self.jitter_tolerance
        if resampled:
            grid = t[0] + np.arange(int(np.floor(duration / step)) + 1) * step
            x = np.interp(grid, t, x)
            logger.debug("Resampled %d samples onto %d-point grid at %.2f Hz", n, len(x), fs)

        mean_level = float(np.mean(x))
        detrended = self._detrend(x)
        if float(np.std(detrended)) < 1e-9:
            # Numerical residue of a constant input
            detrended = np.zeros_like(detrended)
        noise_level = self._out_of_band_level(detrended, fs)

        sos = self._build_filter(fs)
        padlen = min(3 * (2 * len(sos) + 1), len(detrended) - 1)
        filtered = sosfiltfilt(sos, detrended, padlen=padlen)

        amplitude = float(np.std(filtered))
        if amplitude > 1e-12:
            normalized = (filtered - np.mean(filtered)) / amplitude
        else:
            amplitude = 0.0
            normalized = np.zeros_like(filtered)

        return ConditionedSeries(
            values=normalized,
            sample_rate=fs,
            duration=duration,
            resampled=resampled,
            mean_level=mean_level,
            pulse_amplitude=amplitude,
            noise_level=noise_level,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _detrend(self, x: np.ndarray) -> np.ndarray:
        """Subtract a low-order polynomial fitted over normalised time."""
        u = np.linspace(-1.0, 1.0, len(x))
        degree = min(self.detrend_order, len(x) - 1)
        coeffs = P.polyfit(u, x, degree)
        return x - P.polyval(u, coeffs)

    def _out_of_band_level(self, x: np.ndarray, fs: float) -> float:
        """
        RMS fraction of *x* (excluding DC) that lies outside the band.

        The band edges are widened by the Hann main-lobe half-width
        (2 bins), so a tone just inside an edge is not counted as noise.
        """
        n = len(x)
        power = np.abs(np.fft.rfft(x * np.hanning(n))) ** 2
        freqs = np.fft.rfftfreq(n, d=1.0 / fs)
        total = float(power[1:].sum())
        if total <= 0.0:
            return 0.0
        lobe = 2.0 * fs / n
        low = max(self.band_hz[0] - lobe, 0.0)
        high = self.band_hz[1] + lobe
        in_band = float(power[1:][(freqs[1:] >= low) & (freqs[1:] <= high)].sum())
        return float(np.sqrt(max(0.0, 1.0 - in_band / total)))

    def _build_filter(self, fs: float) -> np.ndarray:
        """Construct (and cache) a Butterworth bandpass filter in SOS form."""
        key = round(fs, 6)
        sos = self._filters.get(key)
        if sos is None:
            nyq = fs / 2.0
            low = self.band_hz[0] / nyq
            high = self.band_hz[1] / nyq
            # Clamp to valid range
            low = max(1e-4, min(low, 0.999))
            high = max(low + 1e-4, min(high, 0.999))
            sos = butter(self.filter_order, [low, high], btype="bandpass", output="sos")
            self._filters[key] = sos
        return sos
