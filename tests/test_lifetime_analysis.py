"""
Tests for manual alloc/free pairing.
"""

import pytest

from nativeready.config import EngineConfig
from nativeready.ir import AnalysisTarget, SourceLocation
from nativeready.lifetime_analysis import _one_to_one, analyze_lifetimes
from nativeready.reports import LifetimeEvent
from tests import samples


def _lifetimes(walker, func, *arg_types, config=None):
    fir = walker.build(AnalysisTarget(func, arg_types))
    if config is None:
        return analyze_lifetimes(fir)
    return analyze_lifetimes(fir, config=config)


class TestNoManualMemory:

    def test_empty_report(self, walker):
        report = _lifetimes(walker, samples.local_list, int)
        assert report.events == ()
        assert report.potential_leaks == 0
        assert report.potential_double_frees == 0
        assert report.proper_frees == 0


class TestPairing:

    def test_leak(self, walker):
        report = _lifetimes(walker, samples.leaky, int)
        assert report.potential_leaks == 1
        assert report.potential_double_frees == 0
        (event,) = report.events
        assert event.kind == "alloc"
        assert event.name == "malloc"
        assert event.unmatched
        assert event.paired_with is None

    def test_matched_pair(self, walker):
        report = _lifetimes(walker, samples.paired, int)
        assert report.potential_leaks == 0
        assert report.proper_frees == 1
        alloc, free = report.events
        assert (alloc.kind, free.kind) == ("alloc", "free")
        assert alloc.paired_with == free.index
        assert free.paired_with == alloc.index
        assert not alloc.unmatched and not free.unmatched

    def test_double_free(self, walker):
        report = _lifetimes(walker, samples.double_free, int)
        assert report.potential_leaks == 0
        assert report.potential_double_frees == 1
        assert report.proper_frees == 1
        assert [e.unmatched for e in report.events] == [False, False, True]

    def test_returned_pointer_is_ownership_transfer(self, walker):
        report = _lifetimes(walker, samples.make_buffer, int)
        assert report.potential_leaks == 0

    def test_free_on_one_branch_only(self, walker):
        report = _lifetimes(walker, samples.maybe_free, bool)
        assert report.potential_leaks == 1
        assert report.proper_frees == 1

    def test_allocation_in_loop_leaks(self, walker):
        report = _lifetimes(walker, samples.loop_alloc, int)
        assert report.potential_leaks == 1

    def test_several_allocations_all_freed(self, walker):
        report = _lifetimes(walker, samples.two_pairs, int)
        assert report.potential_leaks == 0
        assert report.potential_double_frees == 0
        assert report.proper_frees == 2
        links = {e.index: e.paired_with for e in report.events}
        for index, partner in links.items():
            assert links[partner] == index


class TestExclusiveBranches:

    def test_free_does_not_match_other_branch(self, walker):
        report = _lifetimes(walker, samples.exclusive_allocs, bool)
        assert report.potential_leaks == 1
        assert report.potential_double_frees == 1
        assert report.proper_frees == 1
        first, second, free = report.events
        assert (first.kind, second.kind, free.kind) == ("alloc", "alloc", "free")
        assert free.paired_with == first.index
        assert first.paired_with == free.index
        assert second.paired_with is None
        assert second.unmatched

    def test_correlated_conditions(self, walker):
        report = _lifetimes(walker, samples.branch_alloc_free, bool)
        assert report.potential_leaks == 0
        assert report.potential_double_frees == 0
        assert report.proper_frees == 2
        kinds = [e.kind for e in report.events]
        assert kinds == ["alloc", "alloc", "free", "free"]
        alloc_p, alloc_q, free_p, free_q = report.events
        assert (alloc_p.paired_with, alloc_q.paired_with) == (free_p.index, free_q.index)
        assert (free_p.paired_with, free_q.paired_with) == (alloc_p.index, alloc_q.index)

    def test_proper_frees_never_exceed_frees(self, walker):
        for func in (samples.exclusive_allocs, samples.branch_alloc_free, samples.maybe_free):
            report = _lifetimes(walker, func, bool)
            frees = [e for e in report.events if e.kind == "free"]
            assert report.proper_frees <= len(frees)


class TestMatching:

    def test_one_to_one(self):
        partner = _one_to_one({(1, 4), (1, 5), (2, 4)})
        assert partner == {1: 5, 5: 1, 2: 4, 4: 2}

    def test_empty(self):
        assert _one_to_one(set()) == {}


class TestParameters:

    def test_freeing_parameter_is_a_release(self, walker):
        report = _lifetimes(walker, samples.release, int)
        assert report.potential_double_frees == 0
        assert report.proper_frees == 0
        (event,) = report.events
        assert event.kind == "free"
        assert not event.unmatched

    def test_freeing_parameter_twice(self, walker):
        report = _lifetimes(walker, samples.release_twice, int)
        assert report.potential_double_frees == 1


class TestPathCap:

    def test_joined_states_still_report_leak(self, walker):
        report = _lifetimes(
            walker, samples.maybe_free, bool, config=EngineConfig(max_paths_per_block=1)
        )
        assert report.potential_leaks == 1


class TestLifetimeEvent:

    def test_kind_is_validated(self):
        with pytest.raises(ValueError):
            LifetimeEvent(SourceLocation("m.py", 1), "realloc", 0)
