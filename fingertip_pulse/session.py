"""
Measurement session.

A :class:`PulseSession` owns the bounded sample buffer for one measurement
attempt and exposes the host contract::

    session = PulseSession(SessionConfig())
    for frame in camera.frames():
        session.add_sample(frame.pixels, frame.timestamp)
        if time_for_update:
            result = session.compute_estimate()
    session.complete()
    final = session.compute_estimate()
    session.reset()          # ready for the next attempt

Lifecycle::

    IDLE --add_sample--> ACQUIRING --compute_estimate--> COMPUTING --> ACQUIRING
      ^                                   |
      +--------------- reset() -----------+---- complete() --> COMPLETE

Thread safety: a single producer may call :meth:`add_sample` while other
threads call :meth:`compute_estimate`.  The buffer is guarded by a lock and
computation runs on an immutable snapshot, so a reader never observes a
partially updated buffer.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Deque, Dict, Optional, Sequence, Tuple

import numpy as np

from .config import SessionConfig
from .diagnostics import SignalDiagnostics
from .finger_detector import FingerDetector
from .frame_sampler import FrameSampler, Sample, SampleOutcome
from .periodicity import Estimate, FrequencyDomainAnalyzer, PeriodicityAnalyzer, TimeDomainAnalyzer
from .recommendations import RecommendationEngine
from .scoring import Quality, QualityScorer
from .signal_conditioner import InsufficientData, SignalConditioner

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    COMPUTING = "computing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class PulseResult:
    """
    Outcome of one :meth:`PulseSession.compute_estimate` call.

    ``heart_rate`` is ``None`` whenever the session cannot vouch for a
    reading; ``quality`` and ``recommendations`` then explain why.
    """

    heart_rate: Optional[float]
    confidence: float
    quality: Quality
    recommendations: Tuple[str, ...] = ()
    signal_strength: float = 0.0
    noise_level: float = 1.0
    estimate: Optional[Estimate] = None
    diagnostics: Optional[SignalDiagnostics] = None

    @property
    def reliable(self) -> bool:
        return self.heart_rate is not None and self.quality is not Quality.POOR

    def to_dict(self) -> Dict[str, Any]:
        """Host-facing representation."""
        return {
            "heartRate": self.heart_rate,
            "confidence": self.confidence,
            "quality": self.quality.value,
            "recommendations": list(self.recommendations),
            "signalStrength": self.signal_strength,
            "noiseLevel": self.noise_level,
        }


class PulseSession:
    """
    One measurement attempt.

    Parameters
    ----------
    config:
        Session configuration.  Invalid values raise
        :class:`~fingertip_pulse.exceptions.ConfigurationError` when the
        config is built.
    """

    def __init__(self, config: Optional[SessionConfig] = None) -> None:
        self.config = config or SessionConfig()
        cfg = self.config
        band = cfg.physiological_band_hz

        self._sampler = FrameSampler(
            roi_fraction=cfg.roi_fraction,
            channel=cfg.channel,
            saturation_level=cfg.saturation_level,
            finger_detector=FingerDetector() if cfg.detect_finger else None,
        )
        self._conditioner = SignalConditioner(
            band_hz=band,
            filter_order=cfg.filter_order,
            detrend_order=cfg.detrend_order,
            min_duration=cfg.min_duration_seconds,
            jitter_tolerance=cfg.jitter_tolerance,
        )
        self._analyzer = PeriodicityAnalyzer(
            time_domain=TimeDomainAnalyzer(band_hz=band, min_prominence=cfg.min_peak_prominence),
            frequency_domain=FrequencyDomainAnalyzer(band_hz=band, min_duration=cfg.min_spectral_seconds),
            strategy=cfg.strategy,
            agreement_bpm=cfg.agreement_bpm,
        )
        self._scorer = QualityScorer(
            full_credit_samples=cfg.full_credit_samples,
            usability_floor=cfg.usability_floor,
        )
        self._recommender = RecommendationEngine(cfg.thresholds)

        self._lock = threading.Lock()
        self._samples: Deque[Sample] = deque(maxlen=cfg.capacity)
        self._state = SessionState.IDLE
        self._dropped = 0
        self._generation = 0
        self._computing = 0
        self._last_result: Optional[PulseResult] = None

        logger.debug(
            "Session created – capacity=%d band=%.2f-%.2f Hz strategy=%s",
            cfg.capacity, band[0], band[1], cfg.strategy.value,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_sample(self, frame: np.ndarray, timestamp: Optional[float] = None) -> SampleOutcome:
        """
        Reduce *frame* to one sample and append it to the buffer.

        Corrupt or empty frames are rejected (and counted as dropped) without
        affecting the session.  When *timestamp* is omitted the current
        monotonic clock is used.

        Irregular spacing between frames is tolerated, but timestamps must
        strictly increase: a frame stamped at or before the previous
        accepted sample carries no new time information and is dropped with
        reason ``"timestamp not increasing"``.  Hosts that deliver frames in
        bursts must stamp each frame with its capture time, not its arrival
        time.
        """
        if timestamp is None:
            timestamp = time.monotonic()
        with self._lock:
            if self._state is SessionState.COMPLETE:
                self._dropped += 1
                return SampleOutcome(accepted=False, reason="session complete")

            last = self._samples[-1].timestamp if self._samples else None
            outcome = self._sampler.sample(frame, timestamp, last)
            if not outcome.accepted:
                self._dropped += 1
                return outcome

            self._samples.append(outcome.sample)
            if self._state is SessionState.IDLE:
                self._state = SessionState.ACQUIRING
                logger.debug("Session acquiring.")
        return outcome

    def compute_estimate(self) -> PulseResult:
        """Return the best estimate from the samples accumulated so far."""
        with self._lock:
            samples = tuple(self._samples)
            dropped = self._dropped
            generation = self._generation
            self._computing += 1
            if self._state is SessionState.ACQUIRING:
                self._state = SessionState.COMPUTING

        try:
            result = self._evaluate(samples, dropped)
        finally:
            with self._lock:
                self._computing -= 1
                # Only the last overlapping compute hands back to ACQUIRING
                if self._computing == 0 and self._state is SessionState.COMPUTING:
                    self._state = SessionState.ACQUIRING

        with self._lock:
            if generation == self._generation:
                self._last_result = result
        return result

    def complete(self) -> None:
        """Declare the end of the acquisition window; later frames are rejected."""
        with self._lock:
            self._state = SessionState.COMPLETE
        logger.debug("Session complete with %d samples.", len(self._samples))

    def reset(self) -> None:
        """Discard all samples and diagnostics and return to IDLE."""
        with self._lock:
            self._samples.clear()
            self._dropped = 0
            self._last_result = None
            self._generation += 1
            self._state = SessionState.IDLE
        logger.debug("Session reset.")

    def conditioned_signal(self) -> np.ndarray:
        """
        Return the current conditioned waveform (for plotting).
        Returns an empty array if there is insufficient data.
        """
        with self._lock:
            samples = tuple(self._samples)
        series = self._conditioner.condition(
            [s.timestamp for s in samples], [s.value for s in samples]
        )
        if isinstance(series, InsufficientData):
            return np.array([])
        return series.values

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def capacity(self) -> int:
        return self.config.capacity

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def dropped_frames(self) -> int:
        return self._dropped

    @property
    def buffer_fill_ratio(self) -> float:
        """How full the sample buffer is (0 – 1)."""
        return len(self._samples) / self.config.capacity

    @property
    def duration(self) -> float:
        """Time span covered by the buffered samples, in seconds."""
        with self._lock:
            if len(self._samples) < 2:
                return 0.0
            return self._samples[-1].timestamp - self._samples[0].timestamp

    @property
    def last_result(self) -> Optional[PulseResult]:
        return self._last_result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _evaluate(self, samples: Sequence[Sample], dropped: int) -> PulseResult:
        cfg = self.config
        diagnostics = _raw_diagnostics(samples, dropped, cfg.min_samples_for_estimate)
        if len(samples) < cfg.min_samples_for_estimate:
            return self._unavailable(replace(diagnostics, insufficient=True))

        try:
            series = self._conditioner.condition(
                [s.timestamp for s in samples], [s.value for s in samples]
            )
            if isinstance(series, InsufficientData):
                logger.debug("Insufficient data: %s", series.reason)
                return self._unavailable(replace(diagnostics, insufficient=True))

            estimate = self._analyzer.analyze(series)
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as exc:
            logger.warning("Pulse estimation failed: %s", exc)
            return self._unavailable(replace(diagnostics, processing_error=True))

        diagnostics = replace(
            diagnostics,
            duration=series.duration,
            pulse_amplitude=series.pulse_amplitude,
            noise_level=series.noise_level,
        )
        issues = self._recommender.issues(diagnostics)
        score = self._scorer.score(estimate, series, diagnostics, issues)

        low_bpm, high_bpm = cfg.band_bpm
        heart_rate: Optional[float] = None
        if estimate is not None and score.usable and low_bpm <= estimate.bpm <= high_bpm:
            heart_rate = round(estimate.bpm, 1)

        if heart_rate is None:
            diagnostics = replace(diagnostics, pulse_detected=False)
            quality = Quality.POOR
        else:
            quality = score.quality

        return PulseResult(
            heart_rate=heart_rate,
            confidence=score.confidence,
            quality=quality,
            recommendations=tuple(self._recommender.recommend(diagnostics)),
            signal_strength=diagnostics.signal_strength,
            noise_level=series.noise_level,
            estimate=estimate,
            diagnostics=diagnostics,
        )

    def _unavailable(self, diagnostics: SignalDiagnostics) -> PulseResult:
        return PulseResult(
            heart_rate=None,
            confidence=0.0,
            quality=Quality.POOR,
            recommendations=tuple(self._recommender.recommend(diagnostics)),
            signal_strength=diagnostics.signal_strength,
            noise_level=1.0 if diagnostics.noise_level is None else diagnostics.noise_level,
            diagnostics=diagnostics,
        )


def _raw_diagnostics(
    samples: Sequence[Sample],
    dropped: int,
    required: int,
) -> SignalDiagnostics:
    """Diagnostics available from raw samples alone."""
    count = len(samples)
    if count == 0:
        return SignalDiagnostics(sample_count=0, required_samples=required, dropped_frames=dropped)
    return SignalDiagnostics(
        sample_count=count,
        required_samples=required,
        duration=samples[-1].timestamp - samples[0].timestamp,
        mean_level=float(np.mean([s.value for s in samples])),
        clipped_fraction=float(np.mean([s.clipped_fraction for s in samples])),
        uncovered_fraction=1.0 - float(np.mean([s.finger_present for s in samples])),
        dropped_frames=dropped,
    )
