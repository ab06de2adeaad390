"""
Tests for dynamic-dispatch detection.
"""

import types

import pytest

from nativeready.devirtualization import analyze_devirtualization
from nativeready.ir import AnalysisTarget, SourceLocation
from nativeready.reports import CallSite, DevirtualizationReport
from tests import samples


def _devirt(walker, func, *arg_types):
    return analyze_devirtualization(walker.build(AnalysisTarget(func, arg_types)))


class TestStaticCalls:

    def test_scalar_operators_are_intrinsic(self, walker):
        report = _devirt(walker, samples.add, int, int)
        (site,) = report.call_sites
        assert not site.is_dynamic
        assert report.total_dynamic_calls == 0

    def test_global_function_calls_are_static(self, walker):
        report = _devirt(walker, samples.hand_off, int)
        (site,) = report.call_sites
        assert site.callee == "consume"
        assert not site.is_dynamic

    def test_tuple_packing_is_intrinsic(self, walker):
        assert _devirt(walker, samples.pair, int, int).total_dynamic_calls == 0


class TestDynamicCalls:

    def test_abstract_operand(self, walker):
        report = _devirt(walker, samples.double, samples.numbers.Number)
        (site,) = report.call_sites
        assert site.is_dynamic
        assert not site.devirtualizable
        assert site.callee == "* on Number, int"
        assert report.total_dynamic_calls == 1

    def test_type_unstable_operand(self, walker):
        report = _devirt(walker, samples.unstable, bool)
        dynamic = [s for s in report.call_sites if s.is_dynamic]
        assert len(dynamic) == 1
        assert not dynamic[0].devirtualizable

    def test_method_on_concrete_receiver_is_devirtualizable(self, walker):
        report = _devirt(walker, samples.use_accumulator, int)
        (site,) = report.call_sites
        assert site.callee == "Accumulator.bump"
        assert site.is_dynamic and site.devirtualizable
        assert report.total_dynamic_calls == 0
        assert report.devirtualizable_calls == 1

    def test_indirect_call(self, walker):
        report = _devirt(walker, samples.apply, types.FunctionType, int)
        (site,) = report.call_sites
        assert site.is_dynamic
        assert not site.devirtualizable
        assert site.callee.startswith("<indirect")
        assert report.total_dynamic_calls == 1


class TestCallSiteInvariants:

    def test_devirtualizable_implies_dynamic(self):
        with pytest.raises(ValueError):
            CallSite(SourceLocation("m.py", 1), "f", is_dynamic=False, devirtualizable=True)

    def test_counts(self):
        loc = SourceLocation("m.py", 1)
        report = DevirtualizationReport.from_sites([
            CallSite(loc, "a", False, False),
            CallSite(loc, "b", True, True),
            CallSite(loc, "c", True, False),
        ])
        assert report.total_dynamic_calls == 1
        assert report.devirtualizable_calls == 1
