"""Exception hierarchy for the pulse engine."""

from __future__ import annotations


class PulseEngineError(Exception):
    """Base class for all errors raised by :mod:`fingertip_pulse`."""


class ConfigurationError(PulseEngineError, ValueError):
    """Raised at construction time when a session is configured incorrectly."""
