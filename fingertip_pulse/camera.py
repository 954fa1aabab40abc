"""
Capture backend.

Wraps OpenCV ``VideoCapture`` to provide an iterator of timestamped BGR
:class:`~fingertip_pulse.frame_sampler.Frame` objects, decoupling the pulse
engine from any specific capture mechanism.  Works with live devices (by
index) and with recorded video files (by path); for files the timestamp is
taken from the container so that replay speed does not matter.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Generator, Optional, Tuple, Union

import cv2
import numpy as np

from .frame_sampler import Frame

logger = logging.getLogger(__name__)

MAX_NULL_STREAK = 10


class CameraSource:
    """
    Parameters
    ----------
    source:
        Camera index or path to a video file.
    resolution:
        (width, height) requested from live devices.
    fps:
        Target frame rate requested from live devices.
    flip_horizontal:
        Mirror frames left-to-right.
    capture_factory:
        Callable creating the capture object (``cv2.VideoCapture`` by default).
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 30,
        flip_horizontal: bool = False,
        capture_factory: Callable[[Union[int, str]], "cv2.VideoCapture"] = cv2.VideoCapture,
    ) -> None:
        self.source = source
        self.resolution = resolution
        self.fps = fps
        self.flip_horizontal = flip_horizontal
        self._factory = capture_factory
        self._cap = None
        self._t0: Optional[float] = None
        self._last_stamp: Optional[float] = None

    @property
    def is_file(self) -> bool:
        return isinstance(self.source, str)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Open the device or file."""
        cap = self._factory(self.source)
        if not cap.isOpened():
            raise RuntimeError(f"Cannot open video source {self.source!r}")
        if not self.is_file:
            w, h = self.resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cap = cap
        self._t0 = None
        self._last_stamp = None
        logger.info(
            "Video source opened – source=%r resolution=%s fps=%d",
            self.source, self.resolution, self.fps,
        )

    def close(self) -> None:
        """Release the device or file."""
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Video source closed.")

    def __enter__(self) -> "CameraSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> Optional[Frame]:
        """
        Capture a single frame.

        Returns
        -------
        Frame
            BGR pixels and a timestamp in seconds since the first frame, or
            *None* on failure.
        """
        if self._cap is None:
            raise RuntimeError("Video source is not open.  Call open() first.")

        ok, pixels = self._cap.read()
        if not ok or pixels is None:
            logger.warning("VideoCapture.read() returned no frame.")
            return None
        if pixels.ndim == 3 and pixels.shape[2] == 4:
            pixels = pixels[:, :, :3]
        if self.flip_horizontal:
            pixels = cv2.flip(pixels, 1)
        return Frame(pixels=np.ascontiguousarray(pixels), timestamp=self._timestamp())

    def frames(self) -> Generator[Frame, None, None]:
        """
        Yield frames until the source is exhausted, closed or keeps failing.

        Usage::

            with CameraSource(0) as cam:
                for frame in cam.frames():
                    session.add_sample(frame.pixels, frame.timestamp)
        """
        null_streak = 0
        while self._cap is not None:
            frame = self.read_frame()
            if frame is None:
                if self.is_file:
                    logger.info("End of video file.")
                    break
                null_streak += 1
                if null_streak >= MAX_NULL_STREAK:
                    logger.error(
                        "Video source returned %d consecutive empty frames – aborting.",
                        MAX_NULL_STREAK,
                    )
                    break
                continue
            null_streak = 0
            yield frame

    def _timestamp(self) -> float:
        if self.is_file:
            # Some backends report 0 ms for every frame; fall back to the
            # nominal frame period so timestamps keep increasing.
            stamp = float(self._cap.get(cv2.CAP_PROP_POS_MSEC)) / 1000.0
            if self._last_stamp is not None and stamp <= self._last_stamp:
                stamp = self._last_stamp + 1.0 / self.fps
            self._last_stamp = stamp
            return stamp
        now = time.monotonic()
        if self._t0 is None:
            self._t0 = now
        return now - self._t0
