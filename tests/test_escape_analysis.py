"""
Tests for escape analysis.
"""

import pytest

from nativeready.escape_analysis import analyze_escapes
from nativeready.ir import AnalysisTarget, SourceLocation
from nativeready.reports import AllocationSite, EscapeReport
from tests import samples


def _escapes(walker, func, *arg_types):
    return analyze_escapes(walker.build(AnalysisTarget(func, arg_types)))


class TestAllocationCounting:

    def test_no_allocations(self, walker):
        report = _escapes(walker, samples.add, int, int)
        assert report.allocation_count == 0
        assert report.promotable_allocations == 0
        assert report.potential_savings_bytes == 0

    def test_tuples_are_not_counted(self, walker):
        assert _escapes(walker, samples.pair, int, int).allocation_count == 0

    def test_instance_creation_counted(self, walker):
        report = _escapes(walker, samples.use_accumulator, int)
        assert report.allocation_count == 1
        assert report.allocations[0].estimated_bytes == 56


class TestEscapeClassification:

    def test_local_list_is_promotable(self, walker):
        report = _escapes(walker, samples.local_list, int)
        (site,) = report.allocations
        assert not site.escapes
        assert site.can_promote
        assert site.estimated_bytes == 80
        assert report.potential_savings_bytes == 80

    def test_returned_list_escapes(self, walker):
        (site,) = _escapes(walker, samples.make_list, int).allocations
        assert site.escapes
        assert not site.can_promote
        assert "returned" in site.reasons

    def test_passed_to_user_function_escapes(self, walker):
        (site,) = _escapes(walker, samples.hand_off, int).allocations
        assert site.escapes
        assert "passed to call" in site.reasons

    def test_stored_into_parameter_escapes(self, walker):
        (site,) = _escapes(walker, samples.store_into, list, int).allocations
        assert "stored outward" in site.reasons

    def test_unbounded_loop_escapes(self, walker):
        (site,) = _escapes(walker, samples.grow, int).allocations
        assert site.escapes
        assert site.reasons == ("allocated in unbounded loop",)

    def test_bounded_loop_is_promotable(self, walker):
        (site,) = _escapes(walker, samples.bounded, int).allocations
        assert site.can_promote
        assert site.estimated_bytes == 56 + 2 * 8

    def test_unsized_allocation_not_promotable(self, walker):
        report = _escapes(walker, samples.paired, int)
        (site,) = report.allocations
        assert not site.escapes
        assert site.estimated_bytes is None
        assert not site.can_promote
        assert report.promotable_allocations == 0


class TestAllocationSiteInvariants:

    def test_promotable_site_cannot_escape(self):
        with pytest.raises(ValueError):
            AllocationSite(SourceLocation("m.py", 1), escapes=True, can_promote=True, estimated_bytes=8)

    def test_promotable_site_needs_size(self):
        with pytest.raises(ValueError):
            AllocationSite(SourceLocation("m.py", 1), escapes=False, can_promote=True, estimated_bytes=None)

    def test_summary_counts_from_sites(self):
        sites = [
            AllocationSite(SourceLocation("m.py", 1), False, True, 16),
            AllocationSite(SourceLocation("m.py", 2), False, True, 24),
            AllocationSite(SourceLocation("m.py", 3), True, False, 80),
        ]
        report = EscapeReport.from_sites(sites)
        assert report.allocation_count == 3
        assert report.promotable_allocations == 2
        assert report.potential_savings_bytes == 40
