"""
Recommendation engine: maps detected failure modes to user guidance.

Rules are evaluated in a fixed priority order (see :class:`Issue`), so the
output for a given set of diagnostics is always the same list in the same
order, regardless of the order in which problems were noticed.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .diagnostics import DiagnosticThresholds, Issue, SignalDiagnostics, detect_issues

RECOMMENDATIONS: Dict[Issue, str] = {
    Issue.LOW_AMPLITUDE: "increase light / press finger more firmly",
    Issue.HIGH_VARIANCE: "hold finger steady",
    Issue.INSUFFICIENT_SAMPLES: "measure for longer",
    Issue.CLIPPING: "reduce pressure, lens may be fully occluded",
    Issue.FINGER_NOT_DETECTED: "place finger completely over the camera and flash",
    Issue.NO_PULSE: "no pulse detected, reposition finger and retry",
    Issue.PROCESSING_ERROR: "signal processing error, please try again",
}


class RecommendationEngine:
    def __init__(self, thresholds: Optional[DiagnosticThresholds] = None) -> None:
        self.thresholds = thresholds or DiagnosticThresholds()

    def issues(self, diagnostics: SignalDiagnostics) -> List[Issue]:
        return detect_issues(diagnostics, self.thresholds)

    def recommend(self, diagnostics: SignalDiagnostics) -> List[str]:
        """Return guidance strings for *diagnostics* in priority order."""
        return self.for_issues(self.issues(diagnostics))

    @staticmethod
    def for_issues(issues: Iterable[Issue]) -> List[str]:
        return [RECOMMENDATIONS[issue] for issue in sorted(set(issues))]
