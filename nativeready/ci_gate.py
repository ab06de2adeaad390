"""
nativeready.ci_gate
===================

Quality gate and CI summaries over a batch of readiness reports.

The gate passes when

* at least one report was analysed,
* no report records an analysis failure,
* the percentage of ready reports is at least ``min_ready_percent``, and
* the rounded average score is at least ``min_avg_score``.

Usage::

    from nativeready.ci_gate import evaluate, write_ci_report

    result = evaluate(summary.reports(), min_ready_percent=90)
    write_ci_report(summary.reports(), "build/readiness")
    if not result.passed:
        raise SystemExit("\\n".join(result.reasons))
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from .errors import CompilationBlocked
from .reports import ReadinessReport, utc_timestamp

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_MIN_READY_PERCENT",
    "DEFAULT_MIN_AVG_SCORE",
    "GateResult",
    "evaluate",
    "check",
    "write_ci_report",
    "require_ready",
]

DEFAULT_MIN_READY_PERCENT = 80
DEFAULT_MIN_AVG_SCORE = 70

# Reports scoring below this are listed under "Focus on fixing".
_FOCUS_SCORE = 80

Reports = Union[Mapping[Any, ReadinessReport], Iterable[ReadinessReport]]


def _as_list(reports: Reports) -> List[ReadinessReport]:
    if isinstance(reports, Mapping):
        return list(reports.values())
    return list(reports)


@dataclass(frozen=True)
class GateResult:
    passed: bool
    total: int
    ready_count: int
    ready_percent: int
    average_score: int
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "total": self.total,
            "ready_count": self.ready_count,
            "ready_percent": self.ready_percent,
            "average_score": self.average_score,
            "reasons": list(self.reasons),
        }


def evaluate(
    reports: Reports,
    min_ready_percent: int = DEFAULT_MIN_READY_PERCENT,
    min_avg_score: int = DEFAULT_MIN_AVG_SCORE,
) -> GateResult:
    """Compute the gate figures for *reports* and the reasons it fails, if any."""
    items = _as_list(reports)
    total = len(items)
    if not total:
        logger.info("quality gate FAILED: no targets analysed")
        return GateResult(False, 0, 0, 0, 0, ("no targets analysed",))

    ready = sum(1 for r in items if r.ready)
    ready_percent = int(round(100 * ready / total))
    average = int(round(sum(r.score for r in items) / total))

    reasons: List[str] = []
    failed = [r for r in items if r.has_failures]
    if failed:
        reasons.append(
            f"{len(failed)} target(s) with analysis failures: "
            + ", ".join(r.target for r in failed)
        )
    if ready_percent < min_ready_percent:
        reasons.append(
            f"ready percentage too low: {ready_percent}% < {min_ready_percent}% "
            f"({total - ready}/{total} not ready)"
        )
    if average < min_avg_score:
        below = sum(1 for r in items if r.score < min_avg_score)
        reasons.append(
            f"average score too low: {average} < {min_avg_score} "
            f"({below} target(s) below threshold)"
        )

    result = GateResult(not reasons, total, ready, ready_percent, average, tuple(reasons))
    logger.info(
        "quality gate %s: %d/%d ready (%d%%, minimum %d%%), average %d (minimum %d)",
        "PASSED" if result.passed else "FAILED",
        ready, total, ready_percent, min_ready_percent, average, min_avg_score,
    )
    return result


def check(
    reports: Reports,
    min_ready_percent: int = DEFAULT_MIN_READY_PERCENT,
    min_avg_score: int = DEFAULT_MIN_AVG_SCORE,
) -> bool:
    return evaluate(reports, min_ready_percent, min_avg_score).passed


# ---------------------------------------------------------------------------
# CI report files
# ---------------------------------------------------------------------------

def _markdown(items: List[ReadinessReport], gate: GateResult, issue_counts: Counter, stamp: str) -> str:
    total, ready = gate.total, gate.ready_count
    ranked = sorted(items, key=lambda r: r.score, reverse=True)
    if total and ready == total:
        status = "✅ All Ready"
    elif ready >= total / 2 and total:
        status = "⚠️ Partially Ready"
    else:
        status = "❌ Not Ready"

    lines = [
        "# Native Compilation Readiness Report",
        "",
        f"Generated: {stamp}",
        "",
        "## Summary",
        "",
        f"- **Total Functions**: {total}",
        f"- **Ready for Compilation**: {ready} ({ready}/{total}, {gate.ready_percent}%)",
        f"- **Average Score**: {gate.average_score}/100",
        "",
        f"**Status**: {status}",
        "",
        "## Function Analysis",
        "",
        "| Function | Score | Status | Issues |",
        "|----------|-------|--------|--------|",
    ]
    for r in ranked:
        icon = "✅" if r.ready else "❌"
        issues = ", ".join(r.issues) if r.issues else "-"
        lines.append(f"| `{r.target}` | {r.score}/100 | {icon} | {issues} |")
    lines.append("")

    if issue_counts:
        lines += ["## Common Issues", ""]
        for issue, count in issue_counts.most_common():
            lines.append(f"- **{issue}**: {count} function(s)")
        lines.append("")

    lines += ["## Recommendations", ""]
    if total and ready == total:
        lines.append("✅ All functions are ready for compilation!")
    else:
        lines += ["Focus on fixing:", ""]
        for r in ranked:
            if not r.ready and r.score < _FOCUS_SCORE:
                lines.append(f"### `{r.target}` (Score: {r.score}/100)")
                lines.extend(f"- {issue}" for issue in r.issues)
                lines.append("")
    return "\n".join(lines) + "\n"


def write_ci_report(reports: Reports, base_path: Union[str, Path]) -> Tuple[Path, Path]:
    """Write ``<base_path>.md`` and ``<base_path>.json`` summaries.

    Returns the two paths written.
    """
    items = _as_list(reports)
    gate = evaluate(items)
    issue_counts: Counter = Counter(issue for r in items for issue in r.issues)
    stamp = utc_timestamp()

    base = Path(base_path)
    base.parent.mkdir(parents=True, exist_ok=True)
    md_path = base.with_name(base.name + ".md")
    json_path = base.with_name(base.name + ".json")

    md_path.write_text(_markdown(items, gate, issue_counts, stamp), encoding="utf-8")
    summary = {
        "timestamp": stamp,
        "total_functions": gate.total,
        "ready_functions": gate.ready_count,
        "average_score": gate.average_score,
        "pass_rate": round(100 * gate.ready_count / gate.total, 2) if gate.total else 0.0,
        "functions": {
            r.target: {"score": r.score, "ready": r.ready, "issues": list(r.issues)}
            for r in items
        },
        "issue_summary": dict(issue_counts),
    }
    json_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    logger.info("CI report written: %s, %s", md_path, json_path)
    return md_path, json_path


def require_ready(report: ReadinessReport) -> ReadinessReport:
    """Return *report* if it is ready, else raise :class:`CompilationBlocked`."""
    if not report.ready:
        raise CompilationBlocked(report.target, report.score, report.issues)
    return report
