#!/usr/bin/env python3
"""
Fingertip Pulse – main entry point.

Runs one measurement attempt over a live camera or a recorded video and
prints the result.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --camera-index INT   OpenCV camera index (default: 0)
    --video PATH         Read frames from a video file instead of a camera
    --resolution WxH     Camera resolution (default: 640x480)
    --fps INT            Expected frame rate (default: 30)
    --window FLOAT       Acquisition window in seconds (default: 30)
    --min-samples INT    Samples required before a heart rate is reported
    --band LOW HIGH      Physiological band in Hz (default: 0.67 4.0)
    --strategy NAME      time_domain, frequency_domain or ensemble
    --json               Print the final result as JSON
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from fingertip_pulse import ConfigurationError, PulseResult, PulseSession, SessionConfig
from fingertip_pulse.camera import CameraSource
from fingertip_pulse.periodicity import EstimationStrategy

logger = logging.getLogger("fingertip_pulse")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fingertip pulse-rate measurement via camera (PPG)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--video", default=None,
                        help="Video file to analyse instead of a live camera")
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--fps", type=int, default=30,
                        help="Expected capture frame rate")
    parser.add_argument("--window", type=float, default=30.0,
                        help="Acquisition window in seconds")
    parser.add_argument("--min-samples", type=int, default=150,
                        help="Samples required before a heart rate is reported")
    parser.add_argument("--band", type=float, nargs=2, default=(0.67, 4.0),
                        metavar=("LOW", "HIGH"),
                        help="Physiological band in Hz")
    parser.add_argument("--strategy", default=EstimationStrategy.ENSEMBLE.value,
                        choices=[s.value for s in EstimationStrategy],
                        help="Periodicity estimation strategy")
    parser.add_argument("--json", action="store_true",
                        help="Print the final result as JSON")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging verbosity")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SessionConfig:
    return SessionConfig(
        acquisition_window_seconds=args.window,
        expected_frame_rate=float(args.fps),
        min_samples_for_estimate=args.min_samples,
        physiological_band_hz=tuple(args.band),
        strategy=EstimationStrategy(args.strategy),
    )


def format_result(result: PulseResult) -> str:
    if result.heart_rate is None:
        text = f"Unable to get a reliable reading  quality={result.quality.value}"
    else:
        text = (
            f"BPM={result.heart_rate:.1f}  conf={result.confidence:.2f}  "
            f"quality={result.quality.value}"
        )
    if result.recommendations:
        text += "  hints: " + "; ".join(result.recommendations)
    return text


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1

    try:
        config = build_config(args)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    source = CameraSource(
        source=args.video if args.video else args.camera_index,
        resolution=(res_w, res_h),
        fps=args.fps,
    )
    session = PulseSession(config)
    update_every = max(1, args.fps)  # log an interim estimate every ~1 second

    logger.info("Place your finger over the lens.  Measuring for %.0f s.", config.acquisition_window_seconds)
    frame_idx = 0
    started: Optional[float] = None
    try:
        with source:
            for frame in source.frames():
                if started is None:
                    started = frame.timestamp
                elapsed = frame.timestamp - started
                if elapsed >= config.acquisition_window_seconds:
                    break
                outcome = session.add_sample(frame.pixels, frame.timestamp)
                if not outcome.accepted:
                    logger.debug("Frame %d dropped: %s", frame_idx, outcome.reason)
                frame_idx += 1
                if frame_idx % update_every == 0:
                    logger.info("[%5.1f s] %s", elapsed, format_result(session.compute_estimate()))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1

    session.complete()
    result = session.compute_estimate()
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_result(result))
    logger.info("Frames: %d accepted, %d dropped.", session.sample_count, session.dropped_frames)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
