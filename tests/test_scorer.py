"""
Tests for the readiness scorer: scoring, issue ordering and failure
isolation.
"""

from unittest.mock import patch

import pytest

from nativeready import quick_check
from nativeready.config import EngineConfig, ScoringWeights
from nativeready.errors import AnalysisFailure
from nativeready.ir import AnalysisTarget
from nativeready.scorer import ReadinessScorer
from tests import samples


class TestScenarios:

    def test_concrete_scalar_function_is_ready(self):
        report = quick_check(samples.add, int, int)
        assert report.target == "add(int, int)"
        assert report.score == 100
        assert report.ready
        assert report.issues == ()
        assert report.failures == ()

    def test_abstract_parameter(self):
        report = quick_check(samples.double, samples.numbers.Number)
        assert report.score == 60
        assert not report.ready
        assert report.issues == ("Contains abstract types", "1 dynamic dispatch sites")

    def test_manual_allocation_without_free(self):
        report = quick_check(samples.leaky, int)
        assert report.lifetimes.potential_leaks == 1
        assert report.lifetimes.potential_double_frees == 0
        assert report.score == 55
        assert report.issues == ("1 heap allocation(s)", "1 potential memory leak(s)")

    def test_double_free(self):
        report = quick_check(samples.double_free, int)
        assert report.issues == ("1 heap allocation(s)", "1 potential double free(s)")

    def test_heap_allocation_only(self):
        report = quick_check(samples.local_list, int)
        assert report.score == 75
        assert not report.ready
        assert report.escapes.promotable_allocations == 1

    def test_constant_folding_does_not_lower_score(self):
        report = quick_check(samples.constant_branch, int)
        assert report.score == 100
        assert report.constants.foldable_expressions == 2


class TestUnavailableIR:

    def test_builtin(self):
        report = quick_check(len, list)
        assert report.score == 0
        assert not report.ready
        assert report.failures[0].analysis == "ir"
        assert report.issues[0].startswith("AnalysisFailed: not a Python function")
        assert report.escapes is None and report.monomorphization is None

    def test_variadic(self):
        report = quick_check(samples.variadic)
        assert report.score == 0
        assert report.issues == ("AnalysisFailed: variadic parameter 'args' is not supported",)

    def test_nesting_limit(self):
        report = quick_check(samples.add, int, int, config=EngineConfig(max_nesting_depth=2))
        assert report.score == 0
        assert report.issues == ("AnalysisFailed: recursion depth exceeded",)

    def test_walker_crash_is_contained(self):
        scorer = ReadinessScorer()
        with patch("nativeready.walker.IRWalker.build", side_effect=KeyError("x")):
            report = scorer.score(AnalysisTarget(samples.add, (int, int)))
        assert report.score == 0
        assert report.failures[0].reason.startswith("KeyError")


class TestFailureIsolation:

    def test_crashing_analysis_is_recorded(self):
        with patch("nativeready.scorer.analyze_devirtualization", side_effect=RuntimeError("boom")):
            report = quick_check(samples.add, int, int)
        assert report.issues[0] == "AnalysisFailed[devirtualization]: RuntimeError: boom"
        assert report.devirtualization is None
        assert report.escapes is not None
        assert report.score == 80
        assert not report.ready

    def test_analysis_failure_is_tagged(self):
        with patch("nativeready.scorer.analyze_escapes", side_effect=AnalysisFailure("bad graph")):
            report = quick_check(samples.add, int, int)
        (failure,) = report.failures
        assert failure.analysis == "escapes"
        assert failure.reason == "bad graph"
        assert failure.fatal

    def test_constants_failure_is_not_fatal(self):
        with patch("nativeready.scorer.analyze_constants", side_effect=AnalysisFailure("bad")):
            report = quick_check(samples.add, int, int)
        assert report.score == 85
        assert report.ready
        assert report.issues == ("AnalysisFailed[constants]: bad",)
        assert not report.failures[0].fatal

    def test_monomorphization_depth_limit(self):
        report = quick_check(samples.chain_a, int, config=EngineConfig(max_call_depth=1))
        assert report.monomorphization is None
        assert report.issues[0] == "AnalysisFailed[monomorphization]: recursion depth exceeded"
        assert report.score == 80
        assert not report.ready


class TestConfiguration:

    def test_threshold(self):
        report = quick_check(samples.local_list, int, config=EngineConfig(ready_threshold=70))
        assert report.score == 75
        assert report.ready

    def test_custom_weights(self):
        weights = ScoringWeights(
            allocations=40, abstract_types=15, dynamic_dispatch=15, lifetimes=15, constants=15,
        )
        report = quick_check(samples.local_list, int, config=EngineConfig(weights=weights))
        assert report.score == 60

    def test_walker_factory(self):
        from nativeready.walker import IRWalker

        built = []

        def factory(config):
            walker = IRWalker(config)
            built.append(walker)
            return walker

        scorer = ReadinessScorer(walker_factory=factory)
        scorer.score(AnalysisTarget(samples.add, (int, int)))
        scorer.score(AnalysisTarget(samples.add, (int, int)))
        assert len(built) == 2


@pytest.mark.parametrize("func,arg_types", [
    (samples.add, (int, int)),
    (samples.paired, (int,)),
    (samples.grow, (int,)),
    (samples.use_accumulator, (int,)),
])
def test_score_is_within_bounds(func, arg_types):
    report = quick_check(func, *arg_types)
    assert 0 <= report.score <= 100
    assert report.ready == (report.score >= 80 and not report.has_fatal_failure)
