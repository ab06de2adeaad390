"""
Tests for abstract-type detection and call-graph specialisation.
"""

import pytest

from nativeready.config import EngineConfig
from nativeready.errors import RecursionLimitExceeded
from nativeready.ir import AnalysisTarget
from nativeready.monomorphization import analyze_monomorphization, classify_slots
from nativeready.walker import IRWalker
from tests import samples


def _mono(walker, func, *arg_types, config=None):
    fir = walker.build(AnalysisTarget(func, arg_types))
    if config is None:
        return analyze_monomorphization(fir, walker)
    return analyze_monomorphization(fir, walker, config)


class TestSlots:

    def test_parameters_come_first(self, walker):
        fir = walker.build(AnalysisTarget(samples.local_list, (int,)))
        slots = classify_slots(fir)
        assert [s.name for s in slots] == ["n", "xs"]
        assert slots[0].position == 0
        assert slots[1].position is None
        assert all(s.is_concrete for s in slots)

    def test_unread_locals_are_not_slots(self, walker):
        fir = walker.build(AnalysisTarget(samples.leaky, (int,)))
        assert [s.name for s in classify_slots(fir)] == ["n"]


class TestConcreteCode:

    def test_scalar_function(self, walker):
        report = _mono(walker, samples.add, int, int)
        assert not report.has_abstract_types
        assert report.specialization_factor == 1.0
        assert report.can_fully_monomorphize
        assert report.abstract_parameters == ()

    def test_explores_constructor_and_methods(self, walker):
        report = _mono(walker, samples.use_accumulator, int)
        assert report.can_fully_monomorphize
        assert report.instantiations == (
            "use_accumulator(int)",
            "Accumulator.__init__(Accumulator, int)",
            "Accumulator.bump(Accumulator, int)",
        )

    def test_recursion_is_explored_once(self, walker):
        report = _mono(walker, samples.countdown, int)
        assert report.can_fully_monomorphize
        assert report.instantiations == ("countdown(int)",)

    def test_free_calls_are_not_explored(self, walker):
        report = _mono(walker, samples.paired, int)
        assert report.can_fully_monomorphize
        assert report.instantiations == ("paired(int)",)


class TestAbstractCode:

    def test_abstract_parameter(self, walker):
        report = _mono(walker, samples.double, samples.numbers.Number)
        assert report.has_abstract_types
        assert not report.can_fully_monomorphize
        (param,) = report.abstract_parameters
        assert param.name == "x"
        assert param.position == 0
        assert param.declared_type_name == "Number"
        assert report.specialization_factor == 0.0

    def test_type_unstable_local(self, walker):
        report = _mono(walker, samples.unstable, bool)
        assert report.has_abstract_types
        (local,) = report.abstract_parameters
        assert local.name == "v"
        assert local.position is None
        assert local.declared_type_name == "float | int"
        assert report.specialization_factor == pytest.approx(0.5)

    def test_indirect_call_blocks_specialisation(self, walker):
        import types

        report = _mono(walker, samples.apply, types.FunctionType, int)
        assert not report.has_abstract_types
        assert not report.can_fully_monomorphize


class TestDepthLimit:

    def test_deep_call_graph_raises(self):
        config = EngineConfig(max_call_depth=1)
        walker = IRWalker(config)
        with pytest.raises(RecursionLimitExceeded) as excinfo:
            _mono(walker, samples.chain_a, int, config=config)
        assert excinfo.value.analysis == "monomorphization"

    def test_within_limit(self, walker):
        report = _mono(walker, samples.chain_a, int)
        assert report.can_fully_monomorphize
        assert len(report.instantiations) == 3
