"""
Fingertip Pulse – camera-based pulse-rate estimation.
Press a fingertip over the camera lens with the flash on; each frame is
reduced to the mean green-channel intensity of the centre region and the
resulting photoplethysmography (PPG) series yields a heart rate, a
confidence score, a quality tier and guidance for the user.
"""

from .config import SessionConfig
from .exceptions import ConfigurationError, PulseEngineError
from .frame_sampler import Frame, SampleOutcome
from .periodicity import EstimationStrategy
from .scoring import Quality
from .session import PulseResult, PulseSession, SessionState

__version__ = "0.2.0"
__author__ = "fingertip_pulse"

__all__ = [
    "ConfigurationError",
    "EstimationStrategy",
    "Frame",
    "PulseEngineError",
    "PulseResult",
    "PulseSession",
    "Quality",
    "SampleOutcome",
    "SessionConfig",
    "SessionState",
]
