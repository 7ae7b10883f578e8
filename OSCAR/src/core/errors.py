"""Phase-local analysis failures.

Every stage raises one of these when its minimum-data precondition is not met.
The phase entry points turn them into error-carrying results, so a failure in
one phase never reaches sibling phases or files.
"""

from __future__ import annotations

from typing import Any, Optional


class PhaseAnalysisError(Exception):
    kind = "PhaseAnalysisError"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class DecodeFailure(PhaseAnalysisError):
    kind = "DecodeFailure"


class InsufficientReferenceLines(PhaseAnalysisError):
    kind = "InsufficientReferenceLines"


class InsufficientValidSamples(PhaseAnalysisError):
    kind = "InsufficientValidSamples"


class DegenerateLagWindow(PhaseAnalysisError):
    kind = "DegenerateLagWindow"


class InconclusivePeriod(PhaseAnalysisError):
    kind = "InconclusivePeriod"
