"""
nativeready.suggestions
=======================

Actionable follow-ups derived from readiness reports.
"""

from __future__ import annotations

from typing import List, Optional

from .reports import EscapeReport, LifetimeReport, ReadinessReport

__all__ = [
    "suggest_optimizations",
    "suggest_stack_promotion",
    "suggest_lifetime_improvements",
]

# Reports at or above this score (and ready) need no suggestions.
WELL_OPTIMIZED_SCORE = 95


def suggest_stack_promotion(report: Optional[EscapeReport]) -> List[str]:
    """One suggestion per allocation that could live on the stack."""
    if report is None:
        return []
    return [
        f"Stack-promote allocation at {site.location} (~{site.estimated_bytes} bytes)"
        for site in report.allocations
        if site.can_promote and not site.escapes
    ]


def suggest_lifetime_improvements(report: Optional[LifetimeReport]) -> List[str]:
    """One suggestion per manual allocation left unfreed on some path."""
    if report is None:
        return []
    return [
        f"Add free() for allocation at {event.location}"
        for event in report.events
        if event.kind == "alloc" and event.unmatched
    ]


def suggest_optimizations(report: ReadinessReport) -> List[str]:
    """General suggestions, most impactful first.

    Order: abstract types, heap allocations, dynamic dispatch, memory
    leaks.  A ready report scoring at least ``WELL_OPTIMIZED_SCORE`` gets
    none.
    """
    if report.ready and report.score >= WELL_OPTIMIZED_SCORE:
        return []
    suggestions: List[str] = []
    mono = report.monomorphization
    if mono is not None and mono.has_abstract_types:
        suggestions.append("Replace abstract types with concrete types or type parameters")
    escapes = report.escapes
    if escapes is not None and escapes.allocation_count:
        suggestions.append("Replace heap allocations with stack or manual memory management")
    devirt = report.devirtualization
    if devirt is not None and devirt.total_dynamic_calls:
        suggestions.append("Reduce dynamic dispatch by using concrete types")
    lifetimes = report.lifetimes
    if lifetimes is not None and lifetimes.potential_leaks:
        suggestions.append("Add free() calls for all manual allocations")
    if lifetimes is not None and lifetimes.potential_double_frees:
        suggestions.append("Remove duplicate free() calls")
    for failure in report.failures:
        suggestions.append(f"Investigate failed {failure.analysis} analysis: {failure.reason}")
    return suggestions
