# nativeready/errors.py
"""
Failure taxonomy for the readiness engine.

Error Hierarchy
───────────────
    NativeReadyError (base)
    ├── IRUnavailable           - target cannot be resolved to a specialisation
    ├── AnalysisFailure         - fault inside one analysis
    │   └── RecursionLimitExceeded - a depth guard tripped (fails closed)
    ├── CompilationBlocked      - a precondition gate refused a target
    ├── ConfigError             - invalid configuration value
    └── ReportFormatError       - malformed report document or history line

``IRUnavailable`` and ``RecursionLimitExceeded`` raised while the walker is
building IR short-circuit the whole report.  An ``AnalysisFailure`` raised by
one analysis is contained at that analysis' boundary by the scorer.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "NativeReadyError",
    "IRUnavailable",
    "AnalysisFailure",
    "RecursionLimitExceeded",
    "CompilationBlocked",
    "ConfigError",
    "ReportFormatError",
]


class NativeReadyError(Exception):
    """Base exception for every error raised by nativeready."""


class IRUnavailable(NativeReadyError):
    """The target's callable cannot be lowered for the given argument types.

    Parameters
    ----------
    target_label:
        Rendered target (``name(types)``), when known.
    reason:
        Why no IR could be produced.
    """

    def __init__(self, reason: str, target_label: Optional[str] = None) -> None:
        self.reason = reason
        self.target_label = target_label
        if target_label:
            super().__init__(f"{target_label}: {reason}")
        else:
            super().__init__(reason)


class AnalysisFailure(NativeReadyError):
    """Fault raised from inside a single analysis.

    ``analysis`` names the failing analysis (``"escapes"``,
    ``"monomorphization"``, ...) or ``"ir"`` for the walker stage.
    """

    def __init__(
        self,
        reason: str,
        analysis: str = "unknown",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.analysis = analysis
        self.cause = cause

    def with_analysis(self, analysis: str) -> "AnalysisFailure":
        """Tag the failure with the analysis that raised it, if untagged."""
        if self.analysis == "unknown":
            self.analysis = analysis
        return self


class RecursionLimitExceeded(AnalysisFailure):
    """A traversal depth guard tripped."""

    def __init__(
        self,
        analysis: str = "unknown",
        depth: Optional[int] = None,
        where: str = "",
    ) -> None:
        super().__init__("recursion depth exceeded", analysis=analysis)
        self.depth = depth
        self.where = where


class CompilationBlocked(NativeReadyError):
    """Raised by the readiness precondition gate for a report that is not ready."""

    def __init__(self, target_label: str, score: int, issues) -> None:
        self.target_label = target_label
        self.score = score
        self.issues = list(issues)
        detail = "; ".join(self.issues) if self.issues else "below threshold"
        super().__init__(
            f"{target_label} is not ready for native compilation "
            f"(score {score}/100): {detail}"
        )


class ConfigError(NativeReadyError, ValueError):
    """An engine configuration value is out of range or malformed."""


class ReportFormatError(NativeReadyError, ValueError):
    """A serialized report or history record does not have the expected shape."""
