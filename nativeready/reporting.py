"""
nativeready.reporting
=====================

Export, comparison and history of readiness reports.

Document form
-------------
:func:`export` returns the plain-dict document of a report (see
:mod:`nativeready.reports`); :func:`to_json` serialises it.  :func:`parse`
and :func:`from_json` rebuild a :class:`ReadinessReport` from a document,
raising :class:`ReportFormatError` on malformed input.  A parsed report
carries the summary counts but not the raw findings.

History
-------
A history file is JSON Lines: one ``{"timestamp", "target", "report"}``
object per line, appended in order and never rewritten.  ``target`` is the
stable :attr:`AnalysisTarget.key`.

Usage::

    from nativeready.reporting import append_history, read_history, score_trend

    append_history("quality.jsonl", target, report)
    trend = score_trend(read_history("quality.jsonl", target))
    print(trend.current, trend.recent_change)
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .errors import ReportFormatError
from .ir import AnalysisTarget
from .reports import ANALYSIS_NAMES, ReadinessReport, utc_timestamp

logger = logging.getLogger(__name__)

__all__ = [
    "export",
    "to_json",
    "parse",
    "from_json",
    "ReportDelta",
    "compare",
    "HistoryRecord",
    "append_history",
    "read_history",
    "ScoreTrend",
    "score_trend",
    "render_text",
]

PathLike = Union[str, Path]
TargetRef = Union[AnalysisTarget, str]

# Serialises appends from threads of this process.
_HISTORY_LOCK = threading.Lock()


# ---------------------------------------------------------------------------
# Export / parse
# ---------------------------------------------------------------------------

def export(report: ReadinessReport) -> Dict[str, Any]:
    """Document form of *report*, suitable for ``json.dumps``."""
    return report.to_dict()


def to_json(report: ReadinessReport, indent: Optional[int] = 2) -> str:
    return json.dumps(export(report), indent=indent)


def parse(doc: Mapping[str, Any]) -> ReadinessReport:
    """Rebuild a report from its document form."""
    return ReadinessReport.from_dict(doc)


def from_json(text: str) -> ReadinessReport:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ReportFormatError(f"invalid JSON: {exc}") from exc
    return parse(doc)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------

def _metrics(report: ReadinessReport) -> Dict[str, float]:
    """Flatten numeric summary values to ``"<analysis>.<field>"`` keys."""
    flat: Dict[str, float] = {}
    for name in ANALYSIS_NAMES:
        sub = report.analysis(name)
        if sub is None:
            continue
        for key, value in sub.summary().items():
            if isinstance(value, (bool, int, float)):
                flat[f"{name}.{key}"] = float(value)
    return flat


@dataclass(frozen=True)
class ReportDelta:
    """Difference between two reports, oriented from *old* to *new*.

    ``metric_deltas`` holds ``new - old`` for every summary metric present
    in both reports; boolean metrics count as 0/1.
    """

    old_target: str
    new_target: str
    score_delta: int
    metric_deltas: Mapping[str, float]
    added_issues: Tuple[str, ...]
    removed_issues: Tuple[str, ...]
    old_ready: bool
    new_ready: bool

    @property
    def readiness_changed(self) -> bool:
        return self.old_ready != self.new_ready

    @property
    def improved(self) -> bool:
        return self.score_delta > 0 or (self.new_ready and not self.old_ready)

    @property
    def regressed(self) -> bool:
        return self.score_delta < 0 or (self.old_ready and not self.new_ready)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "old_target": self.old_target,
            "new_target": self.new_target,
            "score_delta": self.score_delta,
            "metric_deltas": dict(self.metric_deltas),
            "added_issues": list(self.added_issues),
            "removed_issues": list(self.removed_issues),
            "old_ready": self.old_ready,
            "new_ready": self.new_ready,
        }


def compare(old: ReadinessReport, new: ReadinessReport) -> ReportDelta:
    """Compare two reports; ``compare(a, b).score_delta == -compare(b, a).score_delta``."""
    old_metrics = _metrics(old)
    new_metrics = _metrics(new)
    deltas = {
        key: new_metrics[key] - old_metrics[key]
        for key in old_metrics
        if key in new_metrics
    }
    old_issues = set(old.issues)
    new_issues = set(new.issues)
    return ReportDelta(
        old_target=old.target,
        new_target=new.target,
        score_delta=new.score - old.score,
        metric_deltas=deltas,
        added_issues=tuple(i for i in new.issues if i not in old_issues),
        removed_issues=tuple(i for i in old.issues if i not in new_issues),
        old_ready=old.ready,
        new_ready=new.ready,
    )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HistoryRecord:
    timestamp: str
    target: str
    report: ReadinessReport

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "target": self.target, "report": export(self.report)}


def _target_key(target: TargetRef) -> str:
    return target.key if isinstance(target, AnalysisTarget) else str(target)


def append_history(path: PathLike, target: TargetRef, report: ReadinessReport) -> HistoryRecord:
    """Append one record for *target* to the history file at *path*."""
    record = HistoryRecord(utc_timestamp(), _target_key(target), report)
    line = json.dumps(record.to_dict(), separators=(",", ":"))
    p = Path(path)
    with _HISTORY_LOCK:
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    logger.debug("history: appended %s (score %d) to %s", record.target, report.score, p)
    return record


def read_history(path: PathLike, target: Optional[TargetRef] = None) -> List[HistoryRecord]:
    """Records of *path* (all targets when *target* is ``None``), oldest first.

    A missing file has no history.  A malformed line raises
    :class:`ReportFormatError` naming the line.
    """
    p = Path(path)
    if not p.exists():
        return []
    key = _target_key(target) if target is not None else None
    records: List[HistoryRecord] = []
    with p.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, 1):
            if not line.strip():
                continue
            where = f"{p}:{lineno}"
            try:
                doc = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ReportFormatError(f"{where}: invalid JSON ({exc})") from exc
            if not isinstance(doc, dict):
                raise ReportFormatError(f"{where}: expected an object")
            for field_name in ("timestamp", "target", "report"):
                if field_name not in doc:
                    raise ReportFormatError(f"{where}: missing field {field_name!r}")
            if key is not None and doc["target"] != key:
                continue
            try:
                report = parse(doc["report"])
            except ReportFormatError as exc:
                raise ReportFormatError(f"{where}: {exc}") from exc
            records.append(HistoryRecord(str(doc["timestamp"]), str(doc["target"]), report))
    return records


@dataclass(frozen=True)
class ScoreTrend:
    scores: Tuple[int, ...]
    current: int
    best: int
    worst: int
    average: int
    total_change: int
    recent_change: int

    @property
    def direction(self) -> str:
        if self.recent_change > 0:
            return "up"
        if self.recent_change < 0:
            return "down"
        return "flat"


def score_trend(records: List[HistoryRecord]) -> Optional[ScoreTrend]:
    """Summarise the score progression of *records*; ``None`` when empty."""
    if not records:
        return None
    scores = tuple(r.report.score for r in records)
    return ScoreTrend(
        scores=scores,
        current=scores[-1],
        best=max(scores),
        worst=min(scores),
        average=int(round(sum(scores) / len(scores))),
        total_change=scores[-1] - scores[0],
        recent_change=scores[-1] - scores[-2] if len(scores) > 1 else 0,
    )


# ---------------------------------------------------------------------------
# Text rendering
# ---------------------------------------------------------------------------

def render_text(report: ReadinessReport) -> str:
    """Multi-line human-readable rendering of *report*."""
    sep = "=" * 72
    verdict = "READY" if report.ready else "NOT READY"
    lines: List[str] = [
        sep,
        "NATIVE COMPILATION READINESS",
        f"Target        : {report.target}",
        f"Score         : {report.score} / 100  ({verdict})",
        f"Analysed at   : {report.timestamp}",
        sep,
        "",
        "ANALYSES:",
    ]
    for name in ANALYSIS_NAMES:
        sub = report.analysis(name)
        if sub is None:
            failure = report.failure_for(name)
            lines.append(f"  {name:17s} FAILED: {failure.reason if failure else 'not run'}")
            continue
        detail = ", ".join(f"{k}={v}" for k, v in sub.summary().items())
        lines.append(f"  {name:17s} {detail}")
    lines += ["", f"ISSUES ({len(report.issues)}):"]
    if report.issues:
        lines.extend(f"  - {issue}" for issue in report.issues)
    else:
        lines.append("  none")
    lines.append(sep)
    return "\n".join(lines)
