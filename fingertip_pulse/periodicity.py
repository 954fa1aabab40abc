"""
Periodicity analysis: dominant pulse frequency of a conditioned series.

Two independent estimators are provided and can be combined:

* :class:`TimeDomainAnalyzer` - prominent local maxima separated by a
  refractory period; the median inter-beat rate is robust to missed or
  spurious beats, and the spread of the intervals measures regularity.
* :class:`FrequencyDomainAnalyzer` - Hann-windowed, zero-padded power
  spectrum restricted to the physiological band; the share of band power
  concentrated around the dominant peak is the spectral purity.

:class:`PeriodicityAnalyzer` runs one of them or both
(:class:`EstimationStrategy`) and reconciles the two answers.

References
----------
- Elgendi M., "On the analysis of fingertip photoplethysmogram signals."
  Curr Cardiol Rev, 2012.
- Poh M.-Z. et al., "Non-contact, automated cardiac pulse measurements
  using video imaging and blind source separation." Opt Express, 2010.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from scipy.signal import find_peaks

from .signal_conditioner import ConditionedSeries

logger = logging.getLogger(__name__)

MAX_SNR_DB = 60.0


class EstimationStrategy(Enum):
    TIME_DOMAIN = "time_domain"
    FREQUENCY_DOMAIN = "frequency_domain"
    ENSEMBLE = "ensemble"


@dataclass(frozen=True)
class MethodEstimate:
    """Output of a single estimator."""

    strategy: EstimationStrategy
    frequency_hz: float
    bpm: float
    confidence: float
    peak_count: int
    interval_cv: Optional[float] = None
    prominence: Optional[float] = None
    spectral_purity: Optional[float] = None
    snr: Optional[float] = None


@dataclass(frozen=True)
class Estimate:
    """Reconciled estimate handed to the quality scorer."""

    frequency_hz: float
    bpm: float
    confidence: float
    peak_count: int
    snr: Optional[float]
    strategy: EstimationStrategy
    interval_cv: Optional[float] = None
    spectral_purity: Optional[float] = None
    agreement: Optional[bool] = None
    time_domain: Optional[MethodEstimate] = None
    frequency_domain: Optional[MethodEstimate] = None


def _parabolic_offset(alpha: float, beta: float, gamma: float) -> float:
    """Sub-sample offset of a peak from three neighbouring values."""
    denom = alpha - 2.0 * beta + gamma
    if denom == 0.0:
        return 0.0
    return float(np.clip(0.5 * (alpha - gamma) / denom, -0.5, 0.5))


class TimeDomainAnalyzer:
    """
    Peak-interval heart-rate estimator.

    Parameters
    ----------
    band_hz:
        ``(low, high)`` physiological band in Hz.  The upper edge sets the
        refractory period between peaks.
    min_prominence:
        Minimum peak prominence on the normalised series.
    min_intervals:
        Minimum number of in-band inter-peak intervals.
    """

    CV_FULL_CREDIT = 0.03
    CV_ZERO_CREDIT = 0.25
    PROMINENCE_REFERENCE = 1.5

    def __init__(
        self,
        band_hz: Tuple[float, float] = (0.67, 4.0),
        min_prominence: float = 0.5,
        min_intervals: int = 2,
    ) -> None:
        self.band_hz = band_hz
        self.min_prominence = min_prominence
        self.min_intervals = min_intervals

    def analyze(self, series: ConditionedSeries) -> Optional[MethodEstimate]:
        if series.flat or len(series) < 3:
            return None

        x = series.values
        fs = series.sample_rate
        distance = max(1, int(np.floor(fs / self.band_hz[1])))
        peaks, props = find_peaks(x, distance=distance, prominence=self.min_prominence)
        if len(peaks) < self.min_intervals + 1:
            return None

        # Parabolic interpolation for sub-sample peak positions
        positions = np.array(
            [p + _parabolic_offset(x[p - 1], x[p], x[p + 1]) for p in peaks],
            dtype=np.float64,
        )
        intervals = np.diff(positions) / fs
        rates = 60.0 / intervals
        in_band = (rates >= self.band_hz[0] * 60.0) & (rates <= self.band_hz[1] * 60.0)
        if int(in_band.sum()) < self.min_intervals:
            return None

        intervals = intervals[in_band]
        bpm = float(np.median(60.0 / intervals))
        cv = float(np.std(intervals) / np.mean(intervals))
        prominence = float(np.median(props["prominences"]))

        consistency = 1.0 - (cv - self.CV_FULL_CREDIT) / (self.CV_ZERO_CREDIT - self.CV_FULL_CREDIT)
        consistency = float(np.clip(consistency, 0.0, 1.0))
        prominence_score = min(1.0, prominence / self.PROMINENCE_REFERENCE)

        return MethodEstimate(
            strategy=EstimationStrategy.TIME_DOMAIN,
            frequency_hz=bpm / 60.0,
            bpm=bpm,
            confidence=consistency * prominence_score,
            peak_count=int(len(peaks)),
            interval_cv=cv,
            prominence=prominence,
        )


class FrequencyDomainAnalyzer:
    """
    Spectral-peak heart-rate estimator.

    Parameters
    ----------
    band_hz:
        ``(low, high)`` physiological band in Hz.
    min_duration:
        Shortest series (seconds) with adequate frequency resolution.
    purity_reference:
        Spectral purity that earns full confidence.
    zero_pad_factor:
        FFT length multiplier over the next power of two.
    """

    def __init__(
        self,
        band_hz: Tuple[float, float] = (0.67, 4.0),
        min_duration: float = 5.0,
        purity_reference: float = 0.9,
        zero_pad_factor: int = 8,
    ) -> None:
        self.band_hz = band_hz
        self.min_duration = min_duration
        self.purity_reference = purity_reference
        self.zero_pad_factor = zero_pad_factor

    def analyze(self, series: ConditionedSeries) -> Optional[MethodEstimate]:
        if series.flat or series.duration < self.min_duration:
            return None

        x = series.values
        n = len(x)
        fs = series.sample_rate
        nfft = int(2 ** np.ceil(np.log2(n))) * self.zero_pad_factor

        power = np.abs(np.fft.rfft(x * np.hanning(n), n=nfft)) ** 2
        freqs = np.fft.rfftfreq(nfft, d=1.0 / fs)

        low_hz, high_hz = self.band_hz
        band_mask = (freqs >= low_hz) & (freqs <= high_hz)
        if int(band_mask.sum()) < 3:
            return None

        band_power = power[band_mask]
        band_freqs = freqs[band_mask]
        total = float(band_power.sum())
        if total <= 0.0:
            return None

        peak_idx = int(np.argmax(band_power))
        peak_freq = float(band_freqs[peak_idx])

        # Parabolic interpolation for sub-bin frequency resolution
        if 0 < peak_idx < len(band_power) - 1:
            p = _parabolic_offset(
                band_power[peak_idx - 1], band_power[peak_idx], band_power[peak_idx + 1]
            )
            peak_freq += p * float(band_freqs[1] - band_freqs[0])
        peak_freq = float(np.clip(peak_freq, low_hz, high_hz))

        # Hann main lobe spans +/- 2 native bins
        half_width = 2.0 * fs / n
        around = np.abs(band_freqs - band_freqs[peak_idx]) <= half_width
        peak_power = float(band_power[around].sum())
        purity = peak_power / total
        rest = total - peak_power
        snr = MAX_SNR_DB if rest <= 0.0 else min(MAX_SNR_DB, 10.0 * np.log10(peak_power / rest))

        return MethodEstimate(
            strategy=EstimationStrategy.FREQUENCY_DOMAIN,
            frequency_hz=peak_freq,
            bpm=peak_freq * 60.0,
            confidence=min(1.0, purity / self.purity_reference),
            peak_count=int(round(peak_freq * series.duration)),
            spectral_purity=purity,
            snr=float(snr),
        )


class PeriodicityAnalyzer:
    """
    Runs the configured :class:`EstimationStrategy` over a conditioned series.

    Parameters
    ----------
    strategy:
        Which estimator(s) to run.  ``ENSEMBLE`` runs both and reconciles.
    agreement_bpm:
        Maximum difference for the two estimates to count as agreeing.
    disagreement_penalty:
        Confidence multiplier applied when the estimates disagree.
    single_method_penalty:
        Confidence multiplier applied when only one estimate is available.
    """

    def __init__(
        self,
        time_domain: Optional[TimeDomainAnalyzer] = None,
        frequency_domain: Optional[FrequencyDomainAnalyzer] = None,
        strategy: EstimationStrategy = EstimationStrategy.ENSEMBLE,
        agreement_bpm: float = 5.0,
        disagreement_penalty: float = 0.5,
        single_method_penalty: float = 0.8,
    ) -> None:
        self.time_domain = time_domain or TimeDomainAnalyzer()
        self.frequency_domain = frequency_domain or FrequencyDomainAnalyzer()
        self.strategy = strategy
        self.agreement_bpm = agreement_bpm
        self.disagreement_penalty = disagreement_penalty
        self.single_method_penalty = single_method_penalty

    def analyze(self, series: ConditionedSeries) -> Optional[Estimate]:
        if self.strategy is EstimationStrategy.TIME_DOMAIN:
            return _promote(self.time_domain.analyze(series))
        if self.strategy is EstimationStrategy.FREQUENCY_DOMAIN:
            return _promote(self.frequency_domain.analyze(series))
        return self.reconcile(
            self.time_domain.analyze(series),
            self.frequency_domain.analyze(series),
        )

    def reconcile(
        self,
        td: Optional[MethodEstimate],
        fd: Optional[MethodEstimate],
    ) -> Optional[Estimate]:
        """Combine a time-domain and a frequency-domain estimate."""
        if td is None and fd is None:
            return None

        if td is None or fd is None:
            single = td if td is not None else fd
            logger.debug("Only %s estimate available", single.strategy.value)
            return _promote(
                single,
                confidence=single.confidence * self.single_method_penalty,
                time_domain=td,
                frequency_domain=fd,
            )

        if abs(td.bpm - fd.bpm) <= self.agreement_bpm:
            weight = td.confidence + fd.confidence
            if weight > 0.0:
                bpm = (td.bpm * td.confidence + fd.bpm * fd.confidence) / weight
                confidence = (td.confidence ** 2 + fd.confidence ** 2) / weight
            else:
                bpm = (td.bpm + fd.bpm) / 2.0
                confidence = 0.0
            return Estimate(
                frequency_hz=bpm / 60.0,
                bpm=bpm,
                confidence=confidence,
                peak_count=td.peak_count,
                snr=fd.snr,
                strategy=EstimationStrategy.ENSEMBLE,
                interval_cv=td.interval_cv,
                spectral_purity=fd.spectral_purity,
                agreement=True,
                time_domain=td,
                frequency_domain=fd,
            )

        best = td if td.confidence >= fd.confidence else fd
        logger.debug(
            "Estimates disagree (time=%.1f, freq=%.1f BPM); using %s",
            td.bpm, fd.bpm, best.strategy.value,
        )
        return _promote(
            best,
            confidence=best.confidence * self.disagreement_penalty,
            agreement=False,
            peak_count=td.peak_count,
            snr=fd.snr,
            interval_cv=td.interval_cv,
            spectral_purity=fd.spectral_purity,
            time_domain=td,
            frequency_domain=fd,
        )


def _promote(method: Optional[MethodEstimate], **overrides) -> Optional[Estimate]:
    """Lift a :class:`MethodEstimate` into an :class:`Estimate`."""
    if method is None:
        return None
    fields = dict(
        frequency_hz=method.frequency_hz,
        bpm=method.bpm,
        confidence=method.confidence,
        peak_count=method.peak_count,
        snr=method.snr,
        strategy=method.strategy,
        interval_cv=method.interval_cv,
        spectral_purity=method.spectral_purity,
    )
    if method.strategy is EstimationStrategy.TIME_DOMAIN:
        fields["time_domain"] = method
    else:
        fields["frequency_domain"] = method
    fields.update(overrides)
    return Estimate(**fields)
