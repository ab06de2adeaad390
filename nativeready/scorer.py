"""
nativeready.scorer
==================

Combines the five analyses into one :class:`ReadinessReport`.

Usage::

    from nativeready.scorer import ReadinessScorer
    from nativeready.ir import AnalysisTarget

    scorer = ReadinessScorer()
    report = scorer.score(AnalysisTarget(my_func, (int, int)))

    print(f"Readiness: {report.score}/100  ready={report.ready}")
    for issue in report.issues:
        print("  -", issue)

Scoring
-------
Each category contributes its configured weight when it passes::

    allocations       no heap allocation sites
    abstract_types    no abstract parameter or load-bearing local
    dynamic_dispatch  no call site that needs runtime dispatch
    lifetimes         no potential leak and no potential double free
    constants         constant propagation completed (factor 1.0, else 0.0)

The sum is clamped to ``[0, 100]``.  A report is ready when the score meets
``ready_threshold`` and no fatal analysis failure was recorded.

Failure isolation
-----------------
Each analysis runs inside its own boundary: a fault in one is recorded as an
``AnalysisFailed[<name>]`` issue, zeroes that category, and the other
analyses still run.  Only the constant-propagation failure is non-fatal.  If
no IR can be built at all, the report short-circuits to score 0.
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import DEFAULT_CONFIG, EngineConfig
from .constant_propagation import analyze_constants
from .dataflow import ValueFlow
from .devirtualization import analyze_devirtualization
from .errors import AnalysisFailure, IRUnavailable, RecursionLimitExceeded
from .escape_analysis import analyze_escapes
from .ir import AnalysisTarget, FunctionIR
from .lifetime_analysis import analyze_lifetimes
from .monomorphization import analyze_monomorphization
from .reports import AnalysisFailureInfo, ReadinessReport
from .walker import IRWalker

logger = logging.getLogger(__name__)

__all__ = ["ReadinessScorer", "quick_check", "NON_FATAL_ANALYSES"]

NON_FATAL_ANALYSES = frozenset({"constants"})


class _AnalysisContext:
    """Inputs shared by the analyses of one target."""

    def __init__(self, fir: FunctionIR, walker: IRWalker, config: EngineConfig) -> None:
        self.fir = fir
        self.walker = walker
        self.config = config

    @cached_property
    def flow(self) -> ValueFlow:
        return ValueFlow(self.fir)


_ANALYSES: Tuple[Tuple[str, Callable[[_AnalysisContext], Any]], ...] = (
    ("monomorphization", lambda ctx: analyze_monomorphization(ctx.fir, ctx.walker, ctx.config)),
    ("escapes", lambda ctx: analyze_escapes(ctx.fir, ctx.flow)),
    ("devirtualization", lambda ctx: analyze_devirtualization(ctx.fir)),
    ("constants", lambda ctx: analyze_constants(ctx.fir)),
    ("lifetimes", lambda ctx: analyze_lifetimes(ctx.fir, ctx.flow, ctx.config)),
)


class ReadinessScorer:
    """
    Runs the analyses for a target and produces its ``ReadinessReport``.

    Parameters
    ----------
    config : EngineConfig, optional
        Weights, threshold and depth limits.
    walker_factory : callable, optional
        Builds a fresh :class:`IRWalker` per target; defaults to
        ``IRWalker``.
    """

    def __init__(
        self,
        config: EngineConfig = DEFAULT_CONFIG,
        walker_factory: Optional[Callable[[EngineConfig], IRWalker]] = None,
    ) -> None:
        self.config = config
        self.walker_factory = walker_factory or IRWalker

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def score(self, target: AnalysisTarget) -> ReadinessReport:
        walker = self.walker_factory(self.config)
        try:
            fir = walker.build(target)
        except (IRUnavailable, RecursionLimitExceeded) as exc:
            reason = exc.reason
            logger.warning("no IR for %s: %s", target.label, reason)
            return self._unavailable(target, reason)
        except Exception as exc:
            logger.warning("IR construction crashed for %s", target.label, exc_info=True)
            return self._unavailable(target, f"{type(exc).__name__}: {exc}")

        ctx = _AnalysisContext(fir, walker, self.config)
        results: Dict[str, Any] = {}
        failures: List[AnalysisFailureInfo] = []
        for name, run in _ANALYSES:
            try:
                results[name] = run(ctx)
            except AnalysisFailure as exc:
                exc.with_analysis(name)
                logger.warning("analysis %s failed for %s: %s", name, target.label, exc.reason)
                failures.append(AnalysisFailureInfo(name, exc.reason, name not in NON_FATAL_ANALYSES))
            except Exception as exc:
                logger.warning("analysis %s crashed for %s", name, target.label, exc_info=True)
                failures.append(AnalysisFailureInfo(
                    name, f"{type(exc).__name__}: {exc}", name not in NON_FATAL_ANALYSES,
                ))
        return self._compose(target, results, failures)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _unavailable(self, target: AnalysisTarget, reason: str) -> ReadinessReport:
        return ReadinessReport(
            target=target.label,
            score=0,
            ready=False,
            issues=(f"AnalysisFailed: {reason}",),
            failures=(AnalysisFailureInfo("ir", reason, True),),
        )

    def _compose(
        self,
        target: AnalysisTarget,
        results: Dict[str, Any],
        failures: List[AnalysisFailureInfo],
    ) -> ReadinessReport:
        w = self.config.weights
        mono = results.get("monomorphization")
        escapes = results.get("escapes")
        devirt = results.get("devirtualization")
        constants = results.get("constants")
        lifetimes = results.get("lifetimes")

        issues = [f"AnalysisFailed[{f.analysis}]: {f.reason}" for f in failures]
        points = 0.0

        if mono is not None:
            if mono.has_abstract_types:
                issues.append("Contains abstract types")
            else:
                points += w.abstract_types
        if escapes is not None:
            if escapes.allocation_count:
                issues.append(f"{escapes.allocation_count} heap allocation(s)")
            else:
                points += w.allocations
        if devirt is not None:
            if devirt.total_dynamic_calls:
                issues.append(f"{devirt.total_dynamic_calls} dynamic dispatch sites")
            else:
                points += w.dynamic_dispatch
        if lifetimes is not None:
            problems = []
            if lifetimes.potential_leaks:
                problems.append(f"{lifetimes.potential_leaks} potential memory leak(s)")
            if lifetimes.potential_double_frees:
                problems.append(f"{lifetimes.potential_double_frees} potential double free(s)")
            if problems:
                issues.append(", ".join(problems))
            else:
                points += w.lifetimes
        constant_factor = 1.0 if constants is not None else 0.0
        points += w.constants * constant_factor

        score = int(round(max(0.0, min(100.0, points))))
        fatal = any(f.fatal for f in failures)
        ready = score >= self.config.ready_threshold and not fatal
        logger.debug("scored %s: %d/100 ready=%s", target.label, score, ready)
        return ReadinessReport(
            target=target.label,
            score=score,
            ready=ready,
            issues=tuple(issues),
            monomorphization=mono,
            escapes=escapes,
            devirtualization=devirt,
            constants=constants,
            lifetimes=lifetimes,
            failures=tuple(failures),
        )


def quick_check(
    func: Callable[..., Any],
    *arg_types: Any,
    config: Optional[EngineConfig] = None,
) -> ReadinessReport:
    """Score ``func`` for ``arg_types`` without a cache."""
    return ReadinessScorer(config or DEFAULT_CONFIG).score(AnalysisTarget(func, arg_types))
