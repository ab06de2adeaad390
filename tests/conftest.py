"""
Shared helpers for the nativeready test suite.

Reports are built directly from their dataclasses so the gate, reporting and
suggestion tests do not depend on the analyses.
"""

import pytest

from nativeready.ir import SourceLocation
from nativeready.reports import (
    AllocationSite,
    AnalysisFailureInfo,
    ConstantReport,
    DevirtualizationReport,
    EscapeReport,
    LifetimeEvent,
    LifetimeReport,
    MonomorphizationReport,
    ReadinessReport,
)
from nativeready.walker import IRWalker


# ── Report builders ──────────────────────────────────────────────

def make_subreports(allocations=0, dynamic=0, abstract=False, leaks=0, double_frees=0):
    """The five analysis reports with the given summary counts."""
    return {
        "monomorphization": MonomorphizationReport(
            parameters=(),
            has_abstract_types=abstract,
            specialization_factor=0.5 if abstract else 1.0,
            can_fully_monomorphize=not abstract,
        ),
        "escapes": EscapeReport(
            allocations=(),
            allocation_count=allocations,
            promotable_allocations=0,
            potential_savings_bytes=0,
        ),
        "devirtualization": DevirtualizationReport(
            call_sites=(), total_dynamic_calls=dynamic, devirtualizable_calls=0,
        ),
        "constants": ConstantReport(
            candidates=(), foldable_expressions=0, code_reduction_potential_pct=0.0,
        ),
        "lifetimes": LifetimeReport(
            events=(), potential_leaks=leaks,
            potential_double_frees=double_frees, proper_frees=0,
        ),
    }


def make_report(target="f(int)", score=100, ready=None, issues=(), failures=(), **counts):
    """A complete ReadinessReport; ``ready`` defaults to ``score >= 80``."""
    if ready is None:
        ready = score >= 80 and not failures
    subs = make_subreports(**counts)
    for failure in failures:
        subs[failure.analysis] = None
    return ReadinessReport(
        target=target,
        score=score,
        ready=ready,
        issues=tuple(issues),
        failures=tuple(failures),
        **subs,
    )


def failed(analysis="devirtualization", reason="boom", fatal=True):
    return AnalysisFailureInfo(analysis, reason, fatal)


def leaky_escape_report():
    loc = SourceLocation("m.py", 3, 4)
    return EscapeReport.from_sites([
        AllocationSite(loc, escapes=False, can_promote=True, estimated_bytes=64, allocator="malloc"),
        AllocationSite(SourceLocation("m.py", 7, 4), escapes=True, can_promote=False,
                       estimated_bytes=80, allocator="list", reasons=("returned",)),
    ])


def leaky_lifetime_report():
    return LifetimeReport(
        events=(
            LifetimeEvent(SourceLocation("m.py", 3, 4), "alloc", 0, unmatched=True, name="malloc"),
            LifetimeEvent(SourceLocation("m.py", 5, 4), "alloc", 2, paired_with=4, name="malloc"),
            LifetimeEvent(SourceLocation("m.py", 6, 4), "free", 4, paired_with=2, name="free"),
        ),
        potential_leaks=1,
        potential_double_frees=0,
        proper_frees=1,
    )


# ── Time source ──────────────────────────────────────────────────

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def walker():
    return IRWalker()


@pytest.fixture
def clock():
    return FakeClock()
