"""
nativeready: Static Compilability Analysis for Python Functions
================================================================

Estimates how ready a Python function, instantiated at concrete argument
types, is for ahead-of-time native compilation.  Five analyses run over a
typed control-flow IR and are combined into a 0-100 readiness score.

Core modules
------------
walker
    Lowers ``(callable, argument types)`` into a typed :class:`FunctionIR`.
escape_analysis
    Heap allocations and whether they could live on the stack.
monomorphization
    Abstract parameters/locals and transitive specialisability.
devirtualization
    Call sites needing runtime dispatch.
constant_propagation
    Expressions and branches foldable ahead of time.
lifetime_analysis
    Manual alloc/free pairing: leaks and double frees.
scorer
    Combines the analyses into a :class:`ReadinessReport`.
cache
    TTL cache of reports, safe under concurrent use.
scanner
    Target discovery and batch analysis of modules and classes.
reporting
    Export/parse, comparison and JSON-Lines score history.
ci_gate
    Quality gate and CI summary files.

Quick start
-----------
>>> from nativeready import quick_check
>>> def add(x: int, y: int) -> int:
...     return x + y
>>> report = quick_check(add, int, int)   # doctest: +SKIP
>>> report.score, report.ready            # doctest: +SKIP
(100, True)

Package layout
--------------
::

    nativeready/
    ├── __init__.py            ← this file
    ├── errors.py
    ├── config.py
    ├── typesys.py
    ├── ir.py
    ├── frontend.py
    ├── walker.py
    ├── dataflow.py
    ├── reports.py
    ├── escape_analysis.py
    ├── monomorphization.py
    ├── devirtualization.py
    ├── constant_propagation.py
    ├── lifetime_analysis.py
    ├── scorer.py
    ├── cache.py
    ├── scanner.py
    ├── reporting.py
    ├── ci_gate.py
    └── suggestions.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import Any, Dict, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__license__ = "MIT"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: module name -> public names re-exported at top level
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "NativeReadyError",
        "IRUnavailable",
        "AnalysisFailure",
        "RecursionLimitExceeded",
        "CompilationBlocked",
        "ConfigError",
        "ReportFormatError",
    ],
    "config": [
        "ScoringWeights",
        "EngineConfig",
        "DEFAULT_CONFIG",
    ],
    "ir": [
        "StmtKind",
        "Statement",
        "FunctionIR",
        "AnalysisTarget",
    ],
    "walker": [
        "IRWalker",
    ],
    "reports": [
        "EscapeReport",
        "MonomorphizationReport",
        "DevirtualizationReport",
        "ConstantReport",
        "LifetimeReport",
        "AnalysisFailureInfo",
        "ReadinessReport",
    ],
    "escape_analysis": ["analyze_escapes"],
    "monomorphization": ["analyze_monomorphization"],
    "devirtualization": ["analyze_devirtualization"],
    "constant_propagation": ["analyze_constants"],
    "lifetime_analysis": ["analyze_lifetimes"],
    "scorer": [
        "ReadinessScorer",
        "quick_check",
    ],
    "cache": [
        "CacheService",
    ],
    "scanner": [
        "analyzable",
        "scan",
        "analyze_all",
        "analyze_module",
        "ModuleSummary",
    ],
    "reporting": [
        "export",
        "to_json",
        "parse",
        "from_json",
        "compare",
        "ReportDelta",
        "append_history",
        "read_history",
        "score_trend",
        "render_text",
    ],
    "ci_gate": [
        "GateResult",
        "check",
        "evaluate",
        "write_ci_report",
        "require_ready",
    ],
    "suggestions": [
        "suggest_optimizations",
        "suggest_stack_promotion",
        "suggest_lifetime_improvements",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"nativeready: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(f"nativeready.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names

_log.addHandler(logging.NullHandler())


# ---------------------------------------------------------------------------
# Package-level utilities
# ---------------------------------------------------------------------------

def list_submodules() -> List[str]:
    """Return the names of all re-exported submodules."""
    return sorted(_CORE_MODULES)


def engine_info() -> Dict[str, Any]:
    """Version and default configuration, for logging and diagnostics."""
    from .config import DEFAULT_CONFIG

    return {
        "version": __version__,
        "modules": list_submodules(),
        "config": DEFAULT_CONFIG.to_dict(),
    }
