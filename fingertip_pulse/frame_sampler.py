"""
Frame sampler.

Reduces each incoming video frame to one scalar intensity sample: the
spatial mean of a single colour channel over a centred region of interest.
Under light transmitted through a fingertip the green channel carries the
strongest pulsatile modulation (haemoglobin absorbs green far more than
red), so it is the default.

Frames are expected in OpenCV BGR order (H × W × 3).  Four-channel frames
have their alpha channel dropped and two-dimensional frames are treated as
single-channel grayscale.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np

from .finger_detector import FingerDetector

logger = logging.getLogger(__name__)

# BGR channel indices
CHANNELS = {"blue": 0, "green": 1, "red": 2}


@dataclass(frozen=True, eq=False)
class Frame:
    """An immutable pixel buffer together with its arrival time (seconds)."""

    pixels: np.ndarray
    timestamp: float


class Sample(NamedTuple):
    timestamp: float
    value: float
    red: float
    green: float
    blue: float
    clipped_fraction: float
    finger_present: bool


@dataclass(frozen=True)
class SampleOutcome:
    """Return value of ``add_sample``: whether the frame was kept, and why not."""

    accepted: bool
    reason: Optional[str] = None
    sample: Optional[Sample] = None


class FrameSampler:
    """
    Turns frames into :class:`Sample` records.

    Parameters
    ----------
    roi_fraction:
        Fraction of each frame dimension covered by the centred ROI.
    channel:
        ``"green"`` (default), ``"red"`` or ``"blue"``.
    saturation_level:
        Pixel value treated as saturated when computing the clipped fraction.
    finger_detector:
        Detector recording whether the lens looks covered.  ``None`` skips
        the check and marks every sample as covered.
    """

    def __init__(
        self,
        roi_fraction: float = 0.3,
        channel: str = "green",
        saturation_level: float = 255.0,
        finger_detector: Optional[FingerDetector] = None,
    ) -> None:
        self.roi_fraction = roi_fraction
        self.channel = channel
        self.saturation_level = saturation_level
        self.finger_detector = finger_detector
        self._channel_index = CHANNELS[channel]

    def sample(
        self,
        pixels: np.ndarray,
        timestamp: float,
        last_timestamp: Optional[float] = None,
    ) -> SampleOutcome:
        """
        Reduce *pixels* to a :class:`Sample`.

        Malformed input is reported through ``SampleOutcome.reason``; this
        method never raises for bad frames.
        """
        try:
            timestamp = float(timestamp)
        except (TypeError, ValueError):
            return _reject("invalid timestamp")
        if not math.isfinite(timestamp):
            return _reject("invalid timestamp")
        if last_timestamp is not None and timestamp <= last_timestamp:
            return _reject("timestamp not increasing")

        try:
            frame = np.asarray(pixels)
        except (TypeError, ValueError):
            return _reject("corrupt frame")
        if frame.dtype == object or not np.issubdtype(frame.dtype, np.number):
            return _reject("corrupt frame")

        if frame.ndim == 2:
            frame = frame[:, :, np.newaxis]
        if frame.ndim != 3 or frame.shape[2] not in (1, 3, 4):
            return _reject("unsupported frame shape")
        if frame.shape[0] == 0 or frame.shape[1] == 0:
            return _reject("empty frame")
        if frame.shape[2] == 4:
            frame = frame[:, :, :3]

        roi = self._roi(frame).astype(np.float64)
        if not np.isfinite(roi).all():
            return _reject("non-finite pixel values")

        if roi.shape[2] == 1:
            level = float(roi.mean())
            blue = green = red = level
            channel = roi[:, :, 0]
            finger_present = True
        else:
            blue, green, red = (float(v) for v in roi.reshape(-1, 3).mean(axis=0))
            level = (blue, green, red)[self._channel_index]
            channel = roi[:, :, self._channel_index]
            finger_present = (
                self.finger_detector.is_finger(roi)
                if self.finger_detector is not None
                else True
            )

        clipped = float(np.mean((channel >= self.saturation_level) | (channel <= 0.0)))
        return SampleOutcome(
            accepted=True,
            sample=Sample(timestamp, level, red, green, blue, clipped, bool(finger_present)),
        )

    def _roi(self, frame: np.ndarray) -> np.ndarray:
        h, w = frame.shape[:2]
        roi_h = max(1, int(round(h * self.roi_fraction)))
        roi_w = max(1, int(round(w * self.roi_fraction)))
        y0 = (h - roi_h) // 2
        x0 = (w - roi_w) // 2
        return frame[y0:y0 + roi_h, x0:x0 + roi_w]


def _reject(reason: str) -> SampleOutcome:
    logger.debug("Frame rejected: %s", reason)
    return SampleOutcome(accepted=False, reason=reason)
