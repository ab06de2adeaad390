"""
nativeready.scanner
===================

Discovers analysis targets in a namespace and scores them in batch.

A namespace is a module, a class, or a plain mapping of names to callables.
A public function becomes a target when

* every parameter without a default is annotated with a resolvable type
  (parameters with defaults are left out; the walker types them from the default), or
* it carries explicit signatures registered with :func:`analyzable`.

Methods are targets with ``self`` typed as their class; static methods are
plain functions.  Scanning a module also scans the public classes it defines.

Usage::

    from nativeready.scanner import analyzable, analyze_module

    @analyzable(int, int)
    @analyzable(float, float)
    def add(x, y):
        return x + y

    summary = analyze_module(my_module, cache)
    print(summary.ready_count, "/", summary.total)
"""

from __future__ import annotations

import inspect
import logging
import types
import typing
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .cache import CacheService
from .ir import AnalysisTarget
from .reports import ReadinessReport
from .typesys import is_resolvable_type

logger = logging.getLogger(__name__)

__all__ = [
    "SIGNATURES_ATTR",
    "analyzable",
    "inferred_signature",
    "scan",
    "analyze_all",
    "ModuleSummary",
    "analyze_module",
]

SIGNATURES_ATTR = "__nativeready_signatures__"


def analyzable(*arg_types: Any) -> Callable[[Any], Any]:
    """Register an explicit argument-type signature for batch scanning.

    Stack the decorator to register several signatures.
    """

    def decorate(func: Any) -> Any:
        inner = func.__func__ if isinstance(func, (staticmethod, classmethod)) else func
        registered = tuple(getattr(inner, SIGNATURES_ATTR, ()))
        setattr(inner, SIGNATURES_ATTR, (tuple(arg_types),) + registered)
        return func

    return decorate


def inferred_signature(func: Callable[..., Any], skip_first: bool = False) -> Optional[Tuple[Any, ...]]:
    """Argument types from annotations, or ``None`` when not fully annotated."""
    try:
        sig = inspect.signature(func)
        hints = typing.get_type_hints(func)
    except Exception as exc:  # unresolvable annotations or no signature
        logger.debug("no signature for %r: %s", func, exc)
        return None
    params = list(sig.parameters.values())
    if skip_first:
        params = params[1:]
    result: List[Any] = []
    for p in params:
        if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
            return None
        if p.default is not p.empty:
            continue
        if p.kind is p.KEYWORD_ONLY or p.name not in hints:
            return None
        if not is_resolvable_type(hints[p.name]):
            return None
        result.append(hints[p.name])
    return tuple(result)


def _signatures(func: Callable[..., Any], skip_first: bool) -> List[Tuple[Any, ...]]:
    signatures = list(getattr(func, SIGNATURES_ATTR, ()))
    if not signatures:
        inferred = inferred_signature(func, skip_first)
        if inferred is not None:
            signatures.append(inferred)
    return signatures


def _class_targets(cls: type) -> List[AnalysisTarget]:
    targets = []
    for name, member in vars(cls).items():
        if name.startswith("_"):
            continue
        if isinstance(member, staticmethod):
            func = member.__func__
            targets.extend(AnalysisTarget(func, sig) for sig in _signatures(func, False))
        elif inspect.isfunction(member):
            targets.extend(AnalysisTarget(member, (cls,) + sig) for sig in _signatures(member, True))
    return targets


def scan(namespace: Any) -> List[AnalysisTarget]:
    """Enumerate the analysis targets defined in *namespace*, in definition order."""
    targets: List[AnalysisTarget] = []
    if isinstance(namespace, type):
        targets = _class_targets(namespace)
    elif isinstance(namespace, (types.ModuleType, Mapping)):
        module_name = namespace.__name__ if isinstance(namespace, types.ModuleType) else None
        items = vars(namespace) if module_name else namespace
        for name, obj in list(items.items()):
            if name.startswith("_"):
                continue
            if module_name and getattr(obj, "__module__", None) != module_name:
                continue
            if inspect.isfunction(obj):
                targets.extend(AnalysisTarget(obj, sig) for sig in _signatures(obj, False))
            elif isinstance(obj, type):
                targets.extend(_class_targets(obj))
    else:
        raise TypeError(f"cannot scan {type(namespace).__name__}; expected a module, class or mapping")
    unique = list(dict.fromkeys(targets))
    logger.debug("scan found %d target(s)", len(unique))
    return unique


def analyze_all(
    targets: Iterable[AnalysisTarget],
    cache: CacheService,
    max_workers: Optional[int] = None,
) -> Dict[AnalysisTarget, ReadinessReport]:
    """Score every target through *cache* on a thread pool.

    The result preserves the order of *targets*.  Exceptions raised while
    scoring a target propagate to the caller.
    """
    targets = list(dict.fromkeys(targets))
    if not targets:
        return {}
    workers = max_workers or cache.config.max_workers
    completed: Dict[AnalysisTarget, ReadinessReport] = {}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(cache.get_or_compute, t): t for t in targets}
        for future in as_completed(futures):
            completed[futures[future]] = future.result()
    logger.info("analysed %d target(s)", len(targets))
    return {t: completed[t] for t in targets}


@dataclass(frozen=True)
class ModuleSummary:
    """Batch result for one namespace."""

    name: str
    results: Mapping[AnalysisTarget, ReadinessReport]
    threshold: int
    problematic: Tuple[AnalysisTarget, ...]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def ready_count(self) -> int:
        return sum(1 for r in self.results.values() if r.ready)

    @property
    def average_score(self) -> int:
        if not self.results:
            return 0
        return int(round(sum(r.score for r in self.results.values()) / len(self.results)))

    @property
    def pass_rate(self) -> float:
        return 100.0 * self.ready_count / self.total if self.total else 0.0

    def reports(self) -> Sequence[ReadinessReport]:
        return list(self.results.values())


def analyze_module(
    namespace: Any,
    cache: CacheService,
    threshold: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> ModuleSummary:
    """Scan *namespace* and score every target found.

    Targets scoring below *threshold* (default: the configured
    ``ready_threshold``) are listed in ``problematic``, lowest score first.
    """
    threshold = cache.config.ready_threshold if threshold is None else threshold
    results = analyze_all(scan(namespace), cache, max_workers)
    problematic = sorted(
        (t for t, r in results.items() if r.score < threshold),
        key=lambda t: results[t].score,
    )
    name = getattr(namespace, "__name__", type(namespace).__name__)
    summary = ModuleSummary(name, results, threshold, tuple(problematic))
    logger.info(
        "module %s: %d/%d ready, average score %d, %d below %d",
        name, summary.ready_count, summary.total, summary.average_score,
        len(problematic), threshold,
    )
    return summary
