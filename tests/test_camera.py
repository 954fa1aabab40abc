"""
Unit tests for CameraSource using an in-memory capture object.
Run with:  pytest tests/test_camera.py
"""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from fingertip_pulse.camera import MAX_NULL_STREAK, CameraSource


class FakeCapture:
    """Minimal stand-in for ``cv2.VideoCapture``."""

    def __init__(self, frames, opened=True, pos_msec=None):
        self._frames = list(frames)
        self._opened = opened
        self._pos_msec = list(pos_msec) if pos_msec is not None else None
        self._index = -1
        self.props = {}
        self.released = False

    def isOpened(self):
        return self._opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def get(self, prop):
        if prop == cv2.CAP_PROP_POS_MSEC and self._pos_msec is not None:
            return self._pos_msec[self._index]
        return 0.0

    def read(self):
        self._index += 1
        if self._index >= len(self._frames) or self._frames[self._index] is None:
            return False, None
        return True, self._frames[self._index]

    def release(self):
        self.released = True


def _frame(value=50, channels=3):
    return np.full((4, 6, channels), value, dtype=np.uint8)


def _source(capture, **kw):
    return CameraSource(capture_factory=lambda _src: capture, **kw)


class TestCameraSource:

    def test_open_failure_raises(self):
        with pytest.raises(RuntimeError, match="Cannot open"):
            _source(FakeCapture([], opened=False)).open()

    def test_read_before_open_raises(self):
        with pytest.raises(RuntimeError):
            _source(FakeCapture([])).read_frame()

    def test_device_properties_requested(self):
        capture = FakeCapture([])
        with _source(capture, source=1, resolution=(320, 240), fps=15):
            pass
        assert capture.props[cv2.CAP_PROP_FRAME_WIDTH] == 320
        assert capture.props[cv2.CAP_PROP_FRAME_HEIGHT] == 240
        assert capture.props[cv2.CAP_PROP_FPS] == 15
        assert capture.released

    def test_file_properties_untouched(self):
        capture = FakeCapture([])
        with _source(capture, source="clip.mp4"):
            pass
        assert capture.props == {}

    def test_file_timestamps_from_container(self):
        capture = FakeCapture([_frame()] * 3, pos_msec=[0.0, 40.0, 80.0])
        with _source(capture, source="clip.mp4", fps=25) as cam:
            stamps = [f.timestamp for f in cam.frames()]
        assert stamps == pytest.approx([0.0, 0.04, 0.08])

    def test_file_timestamps_fall_back_to_frame_period(self):
        capture = FakeCapture([_frame()] * 3, pos_msec=[0.0, 0.0, 0.0])
        with _source(capture, source="clip.mp4", fps=20) as cam:
            stamps = [f.timestamp for f in cam.frames()]
        assert stamps == pytest.approx([0.0, 0.05, 0.10])

    def test_file_stops_at_first_missing_frame(self):
        capture = FakeCapture([_frame(), None, _frame()], pos_msec=[0.0, 0.0, 66.0])
        with _source(capture, source="clip.mp4") as cam:
            assert len(list(cam.frames())) == 1

    def test_device_tolerates_short_gaps(self):
        frames = [_frame(), None, None, _frame()]
        with _source(FakeCapture(frames), source=0) as cam:
            got = list(cam.frames())
        assert len(got) == 2
        assert got[1].timestamp >= got[0].timestamp

    def test_device_aborts_after_null_streak(self):
        frames = [_frame()] + [None] * (MAX_NULL_STREAK + 5) + [_frame()]
        with _source(FakeCapture(frames), source=0) as cam:
            assert len(list(cam.frames())) == 1

    def test_alpha_channel_dropped(self):
        with _source(FakeCapture([_frame(channels=4)]), source=0) as cam:
            frame = cam.read_frame()
        assert frame.pixels.shape == (4, 6, 3)
        assert frame.pixels.flags["C_CONTIGUOUS"]

    def test_flip_horizontal(self):
        pixels = _frame()
        pixels[:, 0, :] = 200
        with _source(FakeCapture([pixels]), source=0, flip_horizontal=True) as cam:
            frame = cam.read_frame()
        assert np.all(frame.pixels[:, -1, :] == 200)
        assert np.all(frame.pixels[:, 0, :] == 50)
