"""
nativeready.escape_analysis
===========================

Classifies every allocation site as heap-escaping or stack-promotable.

An allocated object escapes when the :class:`~nativeready.dataflow.ValueFlow`
graph shows it may reach

* the return value, a ``yield`` or a ``raise``;
* an outward-flowing container: a parameter (or anything aliasing one), a
  global, a closure cell, or a container that itself escapes;
* an argument of a call that may keep it (any callee outside the known
  borrowing builtins).

Allocations inside a loop whose trip count is not statically known always
escape.  A site escaping along *any* reachable path escapes as a whole.

A non-escaping site whose size is statically bounded is promotable; the sum of
the promotable sizes is the potential saving.

Usage::

    from nativeready.escape_analysis import analyze_escapes

    report = analyze_escapes(fir)
    for site in report.allocations:
        print(site.location, site.escapes, site.estimated_bytes)
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .dataflow import ValueFlow
from .ir import FunctionIR, StmtKind
from .reports import AllocationSite, EscapeReport

logger = logging.getLogger(__name__)

__all__ = ["AllocationSite", "EscapeReport", "analyze_escapes"]


def analyze_escapes(fir: FunctionIR, flow: Optional[ValueFlow] = None) -> EscapeReport:
    """Run escape analysis over the reachable allocations of *fir*."""
    flow = flow or ValueFlow(fir)
    sites: List[AllocationSite] = []
    for stmt in fir.statements():
        if stmt.kind is not StmtKind.ALLOCATION:
            continue
        reasons = flow.escape_reasons(stmt)
        escapes = bool(reasons)
        size = stmt.alloc.size_bytes
        sites.append(AllocationSite(
            location=stmt.location,
            escapes=escapes,
            can_promote=not escapes and size is not None,
            estimated_bytes=size,
            allocator=stmt.alloc.allocator,
            reasons=tuple(sorted(r.value for r in reasons)),
        ))
    sites.sort(key=lambda s: (s.location.line, s.location.col))
    report = EscapeReport.from_sites(sites)
    logger.debug(
        "escapes %s: %d allocation(s), %d promotable, %d bytes",
        fir.target.label, report.allocation_count,
        report.promotable_allocations, report.potential_savings_bytes,
    )
    return report
