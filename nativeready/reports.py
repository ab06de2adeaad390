"""
nativeready.reports
===================

Immutable report data model.

Every analysis produces one frozen report holding its raw findings plus the
summary counts derived from them.  Summary counts are stored as fields (not
recomputed from the findings) so that a report parsed back from its exported
document, which carries no findings, still answers the same questions.

The :class:`ReadinessReport` composes the five analysis reports with the
score, the ready verdict and the ordered issue list.  Its document form is::

    {
      "target": "f(int, int)",
      "score": 100,
      "ready_for_compilation": true,
      "issues": [],
      "analyses": {"monomorphization": {...}, "escapes": {...}, ...},
      "failures": [],
      "timestamp": "2024-01-01T00:00:00+00:00"
    }

A failed analysis appears under its key as ``{"failed": "<reason>"}``.
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ReportFormatError
from .ir import SourceLocation

__all__ = [
    "ANALYSIS_NAMES",
    "AllocationSite",
    "EscapeReport",
    "AbstractParameter",
    "MonomorphizationReport",
    "CallSite",
    "DevirtualizationReport",
    "ConstantCandidate",
    "ConstantReport",
    "LifetimeEvent",
    "LifetimeReport",
    "AnalysisFailureInfo",
    "ReadinessReport",
    "utc_timestamp",
]

# Export order of the per-analysis sections.
ANALYSIS_NAMES: Tuple[str, ...] = (
    "monomorphization",
    "escapes",
    "devirtualization",
    "constants",
    "lifetimes",
)


def utc_timestamp() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _field(doc: Mapping[str, Any], key: str, kind, where: str) -> Any:
    try:
        value = doc[key]
    except (KeyError, TypeError):
        raise ReportFormatError(f"{where}: missing field {key!r}") from None
    # bool is an int subclass; never accept it for a numeric field
    if kind is not bool and isinstance(value, bool):
        raise ReportFormatError(f"{where}: field {key!r} must be {kind.__name__}, got bool")
    if kind is float and isinstance(value, int):
        value = float(value)
    if not isinstance(value, kind):
        raise ReportFormatError(
            f"{where}: field {key!r} must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


# ---------------------------------------------------------------------------
# Escape analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AllocationSite:
    location: SourceLocation
    escapes: bool
    can_promote: bool
    estimated_bytes: Optional[int]
    allocator: str = ""
    reasons: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.can_promote and self.escapes:
            raise ValueError(f"allocation at {self.location} cannot both escape and be promotable")
        if self.can_promote and self.estimated_bytes is None:
            raise ValueError(f"allocation at {self.location} is promotable but has no size")


@dataclass(frozen=True)
class EscapeReport:
    allocations: Tuple[AllocationSite, ...]
    allocation_count: int
    promotable_allocations: int
    potential_savings_bytes: int

    @classmethod
    def from_sites(cls, sites) -> "EscapeReport":
        sites = tuple(sites)
        promotable = [s for s in sites if s.can_promote]
        return cls(
            allocations=sites,
            allocation_count=len(sites),
            promotable_allocations=len(promotable),
            potential_savings_bytes=sum(s.estimated_bytes for s in promotable),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "allocation_count": self.allocation_count,
            "promotable": self.promotable_allocations,
            "savings_bytes": self.potential_savings_bytes,
        }

    @classmethod
    def from_summary(cls, doc: Mapping[str, Any]) -> "EscapeReport":
        where = "analyses.escapes"
        return cls(
            allocations=(),
            allocation_count=_field(doc, "allocation_count", int, where),
            promotable_allocations=_field(doc, "promotable", int, where),
            potential_savings_bytes=_field(doc, "savings_bytes", int, where),
        )


# ---------------------------------------------------------------------------
# Monomorphization
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AbstractParameter:
    """A parameter (``position`` set) or load-bearing local (``position=None``)."""

    position: Optional[int]
    name: str
    declared_type_name: str
    is_concrete: bool


@dataclass(frozen=True)
class MonomorphizationReport:
    parameters: Tuple[AbstractParameter, ...]
    has_abstract_types: bool
    specialization_factor: float
    can_fully_monomorphize: bool
    instantiations: Tuple[str, ...] = ()

    @property
    def abstract_parameters(self) -> Tuple[AbstractParameter, ...]:
        return tuple(p for p in self.parameters if not p.is_concrete)

    def summary(self) -> Dict[str, Any]:
        return {
            "has_abstract_types": self.has_abstract_types,
            "specialization_factor": self.specialization_factor,
            "can_fully_monomorphize": self.can_fully_monomorphize,
        }

    @classmethod
    def from_summary(cls, doc: Mapping[str, Any]) -> "MonomorphizationReport":
        where = "analyses.monomorphization"
        factor = _field(doc, "specialization_factor", float, where)
        if not 0.0 <= factor <= 1.0:
            raise ReportFormatError(f"{where}: specialization_factor {factor} outside [0, 1]")
        return cls(
            parameters=(),
            has_abstract_types=_field(doc, "has_abstract_types", bool, where),
            specialization_factor=factor,
            can_fully_monomorphize=bool(doc.get("can_fully_monomorphize", False)),
        )


# ---------------------------------------------------------------------------
# Devirtualization
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CallSite:
    location: SourceLocation
    callee: str
    is_dynamic: bool
    devirtualizable: bool

    def __post_init__(self) -> None:
        if self.devirtualizable and not self.is_dynamic:
            raise ValueError(f"call site at {self.location} is devirtualizable but not dynamic")


@dataclass(frozen=True)
class DevirtualizationReport:
    call_sites: Tuple[CallSite, ...]
    total_dynamic_calls: int
    devirtualizable_calls: int

    @classmethod
    def from_sites(cls, sites) -> "DevirtualizationReport":
        sites = tuple(sites)
        return cls(
            call_sites=sites,
            total_dynamic_calls=sum(1 for s in sites if s.is_dynamic and not s.devirtualizable),
            devirtualizable_calls=sum(1 for s in sites if s.devirtualizable),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "total_dynamic_calls": self.total_dynamic_calls,
            "devirtualizable": self.devirtualizable_calls,
        }

    @classmethod
    def from_summary(cls, doc: Mapping[str, Any]) -> "DevirtualizationReport":
        where = "analyses.devirtualization"
        return cls(
            call_sites=(),
            total_dynamic_calls=_field(doc, "total_dynamic_calls", int, where),
            devirtualizable_calls=_field(doc, "devirtualizable", int, where),
        )


# ---------------------------------------------------------------------------
# Constant propagation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConstantCandidate:
    location: SourceLocation
    is_foldable: bool
    contribution_estimate: int
    value_description: str = ""


@dataclass(frozen=True)
class ConstantReport:
    candidates: Tuple[ConstantCandidate, ...]
    foldable_expressions: int
    code_reduction_potential_pct: float
    eliminable_statements: int = 0
    total_statements: int = 0

    def summary(self) -> Dict[str, Any]:
        return {
            "foldable_expressions": self.foldable_expressions,
            "reduction_pct": self.code_reduction_potential_pct,
        }

    @classmethod
    def from_summary(cls, doc: Mapping[str, Any]) -> "ConstantReport":
        where = "analyses.constants"
        return cls(
            candidates=(),
            foldable_expressions=_field(doc, "foldable_expressions", int, where),
            code_reduction_potential_pct=_field(doc, "reduction_pct", float, where),
        )


# ---------------------------------------------------------------------------
# Lifetime analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LifetimeEvent:
    """One manual ``alloc`` or ``free`` statement.

    ``index`` is the statement index; ``paired_with`` the index of the
    event on the other side it is matched with, one to one, when some path
    paired them.
    ``unmatched`` is set when at least one path left it unpaired.
    """

    location: SourceLocation
    kind: str
    index: int
    paired_with: Optional[int] = None
    unmatched: bool = False
    name: str = ""

    def __post_init__(self) -> None:
        if self.kind not in ("alloc", "free"):
            raise ValueError(f"lifetime event kind must be 'alloc' or 'free', got {self.kind!r}")


@dataclass(frozen=True)
class LifetimeReport:
    events: Tuple[LifetimeEvent, ...]
    potential_leaks: int
    potential_double_frees: int
    proper_frees: int

    def summary(self) -> Dict[str, Any]:
        return {
            "potential_leaks": self.potential_leaks,
            "potential_double_frees": self.potential_double_frees,
            "proper_frees": self.proper_frees,
        }

    @classmethod
    def from_summary(cls, doc: Mapping[str, Any]) -> "LifetimeReport":
        where = "analyses.lifetimes"
        return cls(
            events=(),
            potential_leaks=_field(doc, "potential_leaks", int, where),
            potential_double_frees=_field(doc, "potential_double_frees", int, where),
            proper_frees=_field(doc, "proper_frees", int, where),
        )


_REPORT_TYPES = {
    "monomorphization": MonomorphizationReport,
    "escapes": EscapeReport,
    "devirtualization": DevirtualizationReport,
    "constants": ConstantReport,
    "lifetimes": LifetimeReport,
}


# ---------------------------------------------------------------------------
# Readiness report
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisFailureInfo:
    """Record of an analysis that did not complete.

    ``analysis`` is one of :data:`ANALYSIS_NAMES`, or ``"ir"`` when the
    walker could not produce IR at all.
    """

    analysis: str
    reason: str
    fatal: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"analysis": self.analysis, "reason": self.reason, "fatal": self.fatal}

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "AnalysisFailureInfo":
        return cls(
            analysis=_field(doc, "analysis", str, "failures"),
            reason=_field(doc, "reason", str, "failures"),
            fatal=bool(doc.get("fatal", True)),
        )


@dataclass(frozen=True)
class ReadinessReport:
    """Verdict for one target.  Created once by the scorer, never mutated."""

    target: str
    score: int
    ready: bool
    issues: Tuple[str, ...] = ()
    monomorphization: Optional[MonomorphizationReport] = None
    escapes: Optional[EscapeReport] = None
    devirtualization: Optional[DevirtualizationReport] = None
    constants: Optional[ConstantReport] = None
    lifetimes: Optional[LifetimeReport] = None
    failures: Tuple[AnalysisFailureInfo, ...] = ()
    timestamp: str = field(default_factory=utc_timestamp)

    def __post_init__(self) -> None:
        if not 0 <= self.score <= 100:
            raise ValueError(f"score must be within [0, 100], got {self.score}")
        if not isinstance(self.issues, tuple):
            object.__setattr__(self, "issues", tuple(self.issues))
        if not isinstance(self.failures, tuple):
            object.__setattr__(self, "failures", tuple(self.failures))

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def has_fatal_failure(self) -> bool:
        return any(f.fatal for f in self.failures)

    def analysis(self, name: str) -> Any:
        if name not in _REPORT_TYPES:
            raise KeyError(name)
        return getattr(self, name)

    def failure_for(self, name: str) -> Optional[AnalysisFailureInfo]:
        for f in self.failures:
            if f.analysis == name:
                return f
        for f in self.failures:
            if f.analysis == "ir":
                return f
        return None

    # ----- document form ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        analyses: Dict[str, Any] = {}
        for name in ANALYSIS_NAMES:
            sub = getattr(self, name)
            if sub is not None:
                analyses[name] = sub.summary()
            else:
                failure = self.failure_for(name)
                analyses[name] = {"failed": failure.reason if failure else "not run"}
        return {
            "target": self.target,
            "score": self.score,
            "ready_for_compilation": self.ready,
            "issues": list(self.issues),
            "analyses": analyses,
            "failures": [f.to_dict() for f in self.failures],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "ReadinessReport":
        if not isinstance(doc, Mapping):
            raise ReportFormatError(f"report document must be an object, got {type(doc).__name__}")
        issues = _field(doc, "issues", list, "report")
        if not all(isinstance(i, str) for i in issues):
            raise ReportFormatError("report: every issue must be a string")
        analyses = doc.get("analyses", {})
        if not isinstance(analyses, Mapping):
            raise ReportFormatError("report: 'analyses' must be an object")
        subs: Dict[str, Any] = {}
        for name, report_type in _REPORT_TYPES.items():
            section = analyses.get(name)
            if section is None or "failed" in section:
                subs[name] = None
            else:
                subs[name] = report_type.from_summary(section)
        failures: List[AnalysisFailureInfo] = [
            AnalysisFailureInfo.from_dict(f) for f in doc.get("failures", [])
        ]
        score = _field(doc, "score", int, "report")
        if not 0 <= score <= 100:
            raise ReportFormatError(f"report: score {score} outside [0, 100]")
        return cls(
            target=_field(doc, "target", str, "report"),
            score=score,
            ready=_field(doc, "ready_for_compilation", bool, "report"),
            issues=tuple(issues),
            failures=tuple(failures),
            timestamp=str(doc.get("timestamp", "")),
            **subs,
        )
