"""
Integration tests for PulseSession and SessionConfig.
Run with:  pytest tests/test_session.py
"""

from __future__ import annotations

import threading

import numpy as np
import pytest

from fingertip_pulse import (
    ConfigurationError,
    EstimationStrategy,
    PulseSession,
    Quality,
    SessionConfig,
    SessionState,
)

FPS = 30.0


def _finger_frame(green, size=8) -> np.ndarray:
    """Float BGR frame that looks like a fingertip over the flash."""
    frame = np.empty((size, size, 3), dtype=np.float64)
    frame[:, :, 0] = 20.0
    frame[:, :, 1] = green
    frame[:, :, 2] = 170.0
    return frame


def _feed(session, bpm, n, fps=FPS, start=0.0, jitter=None):
    for i in range(n):
        t = start + i / fps
        if jitter is not None:
            t += jitter[i]
        green = 60.0 + 5.0 * np.sin(2 * np.pi * (bpm / 60.0) * t)
        session.add_sample(_finger_frame(green), t)


def _feed_noise(session, n, seed=1):
    rng = np.random.default_rng(seed)
    for i in range(n):
        session.add_sample(_finger_frame(60.0 + rng.normal(0.0, 5.0)), i / FPS)


class _StubAnalyzer:
    """Stand-in periodicity analyzer used to observe or break the pipeline."""

    def __init__(self, session, error=None):
        self.session = session
        self.error = error
        self.seen_states = []

    def analyze(self, series):
        self.seen_states.append(self.session.state)
        if self.error is not None:
            raise self.error
        return None


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------

class TestEstimation:

    @pytest.mark.parametrize("bpm", [41, 42, 60, 72, 80, 120, 230, 238])
    def test_pure_sinusoid(self, bpm):
        session = PulseSession()
        _feed(session, bpm, 900)
        result = session.compute_estimate()
        assert result.heart_rate == pytest.approx(bpm, abs=2.0)
        assert result.quality is Quality.EXCELLENT
        assert result.confidence > 0.85
        assert result.recommendations == ()
        assert result.reliable

    def test_slow_pulse_at_low_band_edge(self):
        short, full = PulseSession(), PulseSession()
        _feed(short, 40.5, 300)
        _feed(full, 40.5, 900)
        short_result = short.compute_estimate()
        full_result = full.compute_estimate()
        assert full_result.noise_level < 0.2
        assert "hold finger steady" not in full_result.recommendations
        assert full_result.confidence >= short_result.confidence
        assert full_result.quality is Quality.EXCELLENT
        assert full_result.heart_rate == pytest.approx(40.5, abs=2.0)

    def test_scenario_full_window_72_bpm(self):
        session = PulseSession(SessionConfig.from_mapping({
            "acquisitionWindowSeconds": 30,
            "expectedFrameRate": 30,
            "minSamplesForEstimate": 150,
            "physiologicalBandHz": [0.67, 4.0],
        }))
        _feed(session, 72, 900)
        result = session.compute_estimate()
        assert 70.0 <= result.heart_rate <= 74.0
        assert result.quality in (Quality.GOOD, Quality.EXCELLENT)

    def test_scenario_too_few_samples(self):
        session = PulseSession()
        _feed(session, 80, 50)
        result = session.compute_estimate()
        assert result.heart_rate is None
        assert result.quality is Quality.POOR
        assert "measure for longer" in result.recommendations

    def test_below_minimum_never_reports(self):
        session = PulseSession()
        _feed(session, 72, 149)
        result = session.compute_estimate()
        assert result.heart_rate is None
        assert result.confidence == 0.0
        assert result.recommendations == ("measure for longer",)

    def test_white_noise_is_unreliable(self):
        session = PulseSession()
        _feed_noise(session, 900)
        result = session.compute_estimate()
        assert result.confidence < 0.35
        assert result.quality is Quality.POOR
        assert not result.reliable
        assert "hold finger steady" in result.recommendations

    @pytest.mark.parametrize("bpm", [40.5, 41, 72, 238])
    def test_confidence_monotone_in_sample_count(self, bpm):
        confidences = []
        for n in (150, 300, 450, 600, 900):
            session = PulseSession()
            _feed(session, bpm, n)
            confidences.append(session.compute_estimate().confidence)
        for earlier, later in zip(confidences, confidences[1:]):
            assert later >= earlier - 1e-9

    def test_compute_is_idempotent(self):
        session = PulseSession()
        _feed(session, 90, 600)
        first = session.compute_estimate()
        second = session.compute_estimate()
        assert first.to_dict() == second.to_dict()
        assert session.last_result == second

    def test_out_of_band_rhythm_not_reported(self):
        session = PulseSession()
        _feed(session, 25, 900)
        result = session.compute_estimate()
        assert result.heart_rate is None or 40.0 <= result.heart_rate <= 240.0

    def test_jittered_timestamps(self):
        jitter = np.random.default_rng(4).uniform(-0.4, 0.4, 900) / FPS
        session = PulseSession()
        _feed(session, 72, 900, jitter=jitter)
        result = session.compute_estimate()
        assert result.heart_rate == pytest.approx(72.0, abs=2.0)

    def test_time_domain_strategy(self):
        session = PulseSession(SessionConfig(strategy="time_domain"))
        _feed(session, 72, 900)
        result = session.compute_estimate()
        assert result.estimate.strategy is EstimationStrategy.TIME_DOMAIN
        assert result.heart_rate == pytest.approx(72.0, abs=2.0)

    def test_uncovered_lens(self):
        session = PulseSession()
        for i in range(300):
            frame = np.empty((8, 8, 3))
            frame[:, :, :] = (160.0, 180.0 + 5.0 * np.sin(2 * np.pi * 1.2 * i / FPS), 200.0)
            session.add_sample(frame, i / FPS)
        result = session.compute_estimate()
        assert "place finger completely over the camera and flash" in result.recommendations

    def test_saturated_channel(self):
        session = PulseSession()
        for i in range(300):
            session.add_sample(_finger_frame(255.0), i / FPS)
        result = session.compute_estimate()
        assert result.heart_rate is None
        assert "reduce pressure, lens may be fully occluded" in result.recommendations

    def test_processing_error_is_reported(self):
        session = PulseSession()
        session._analyzer = _StubAnalyzer(session, error=ValueError("boom"))
        _feed(session, 72, 300)
        result = session.compute_estimate()
        assert result.heart_rate is None
        assert result.quality is Quality.POOR
        assert result.recommendations[-1] == "signal processing error, please try again"

    def test_to_dict(self):
        session = PulseSession()
        _feed(session, 72, 900)
        payload = session.compute_estimate().to_dict()
        assert set(payload) == {
            "heartRate", "confidence", "quality", "recommendations", "signalStrength", "noiseLevel",
        }
        assert payload["quality"] == "EXCELLENT"
        assert isinstance(payload["recommendations"], list)
        assert 0.0 < payload["signalStrength"] <= 1.0


# ---------------------------------------------------------------------------
# Buffer and lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:

    def test_state_machine(self):
        session = PulseSession()
        assert session.state is SessionState.IDLE
        _feed(session, 72, 10)
        assert session.state is SessionState.ACQUIRING
        session.compute_estimate()
        assert session.state is SessionState.ACQUIRING
        session.complete()
        assert session.state is SessionState.COMPLETE
        session.compute_estimate()
        assert session.state is SessionState.COMPLETE
        session.reset()
        assert session.state is SessionState.IDLE

    def test_overlapping_computes_keep_computing_state(self):
        session = PulseSession()

        class NestedAnalyzer(_StubAnalyzer):
            def analyze(self, series):
                if not self.seen_states:
                    self.seen_states.append(self.session.state)
                    # A second compute starts and finishes inside the first
                    self.session.compute_estimate()
                self.seen_states.append(self.session.state)
                return None

        stub = NestedAnalyzer(session)
        session._analyzer = stub
        _feed(session, 72, 300)
        session.compute_estimate()
        assert stub.seen_states == [
            SessionState.COMPUTING,   # outer, before the inner compute
            SessionState.COMPUTING,   # inner
            SessionState.COMPUTING,   # outer, after the inner compute returned
        ]
        assert session.state is SessionState.ACQUIRING

    def test_computing_state_during_analysis(self):
        session = PulseSession()
        stub = _StubAnalyzer(session)
        session._analyzer = stub
        _feed(session, 72, 300)
        session.compute_estimate()
        assert stub.seen_states == [SessionState.COMPUTING]
        assert session.state is SessionState.ACQUIRING

    def test_samples_rejected_after_complete(self):
        session = PulseSession()
        _feed(session, 72, 10)
        session.complete()
        outcome = session.add_sample(_finger_frame(60.0), 100.0)
        assert outcome.accepted is False
        assert outcome.reason == "session complete"
        assert session.sample_count == 10
        assert session.dropped_frames == 1

    def test_capacity_evicts_oldest(self):
        session = PulseSession(SessionConfig(acquisition_window_seconds=10.0))
        assert session.capacity == 300
        _feed(session, 72, 400)
        assert session.sample_count == 300
        assert session.buffer_fill_ratio == 1.0
        assert session.duration == pytest.approx(299 / FPS)

    def test_bad_frames_are_dropped(self):
        session = PulseSession()
        assert session.add_sample(None, 0.0).reason == "corrupt frame"
        assert session.add_sample(np.zeros((0, 0, 3)), 0.1).reason == "empty frame"
        assert session.dropped_frames == 2
        assert session.sample_count == 0
        assert session.state is SessionState.IDLE

    def test_repeated_timestamp_dropped(self):
        session = PulseSession()
        assert session.add_sample(_finger_frame(60.0), 1.0).accepted
        assert session.add_sample(_finger_frame(60.0), 1.0).reason == "timestamp not increasing"
        assert session.add_sample(_finger_frame(60.0), 0.5).reason == "timestamp not increasing"
        # Bursty but strictly increasing capture times are kept
        for t in (1.001, 1.002, 1.5, 1.501):
            assert session.add_sample(_finger_frame(60.0), t).accepted
        assert session.dropped_frames == 2
        assert session.sample_count == 5

    def test_default_timestamp(self):
        session = PulseSession()
        outcome = session.add_sample(_finger_frame(60.0))
        assert outcome.accepted
        assert outcome.sample.timestamp > 0.0
        assert session.sample_count == 1

    def test_reset_matches_fresh_session(self):
        used = PulseSession()
        _feed_noise(used, 500)
        used.add_sample(None, 0.0)
        used.compute_estimate()
        used.complete()
        used.reset()
        assert used.sample_count == 0
        assert used.dropped_frames == 0
        assert used.last_result is None

        fresh = PulseSession()
        for session in (used, fresh):
            _feed(session, 84, 600)
        assert used.compute_estimate().to_dict() == fresh.compute_estimate().to_dict()

    def test_conditioned_signal(self):
        session = PulseSession()
        assert session.conditioned_signal().size == 0
        _feed(session, 72, 300)
        signal = session.conditioned_signal()
        assert signal.shape == (300,)
        assert float(np.std(signal)) == pytest.approx(1.0)

    def test_concurrent_producer_and_reader(self):
        session = PulseSession()
        errors = []
        done = threading.Event()

        def produce():
            try:
                _feed(session, 72, 900)
            except Exception as exc:  # pragma: no cover
                errors.append(exc)
            finally:
                done.set()

        producer = threading.Thread(target=produce)
        producer.start()
        while not done.is_set():
            try:
                result = session.compute_estimate()
            except Exception as exc:  # pragma: no cover
                errors.append(exc)
                break
            assert result.heart_rate is None or 40.0 <= result.heart_rate <= 240.0
        producer.join()

        assert errors == []
        assert session.sample_count == 900
        assert session.compute_estimate().heart_rate == pytest.approx(72.0, abs=2.0)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestSessionConfig:

    def test_defaults(self):
        cfg = SessionConfig()
        assert cfg.capacity == 900
        assert cfg.full_credit_samples == 450
        assert cfg.band_bpm == pytest.approx((40.2, 240.0))

    def test_from_mapping_accepts_both_spellings(self):
        cfg = SessionConfig.from_mapping({
            "acquisitionWindowSeconds": 20,
            "expected_frame_rate": 25,
            "physiologicalBandHz": [0.7, 3.5],
            "strategy": "frequency_domain",
        })
        assert cfg.capacity == 500
        assert cfg.physiological_band_hz == (0.7, 3.5)
        assert cfg.strategy is EstimationStrategy.FREQUENCY_DOMAIN

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"acquisition_window_seconds": 0},
            {"acquisition_window_seconds": float("nan")},
            {"expected_frame_rate": -30},
            {"physiological_band_hz": (4.0, 0.67)},
            {"physiological_band_hz": (0.0, 4.0)},
            {"physiological_band_hz": (0.67, 4.0, 5.0)},
            {"physiological_band_hz": "fast"},
            {"expected_frame_rate": 6.0},
            {"min_samples_for_estimate": 1},
            {"min_samples_for_estimate": 150.5},
            {"acquisition_window_seconds": 2.0},
            {"roi_fraction": 0.0},
            {"channel": "alpha"},
            {"strategy": "guess"},
            {"usability_floor": 1.0},
        ],
    )
    def test_invalid_values_fail_fast(self, kwargs):
        with pytest.raises(ConfigurationError):
            SessionConfig(**kwargs)

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError, match="unknownKey"):
            SessionConfig.from_mapping({"unknownKey": 1})

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            PulseSession(SessionConfig(acquisition_window_seconds=0))
