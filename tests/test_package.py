"""
Tests for the package surface and the error hierarchy.
"""

import pytest

import nativeready
from nativeready.errors import (
    AnalysisFailure,
    CompilationBlocked,
    IRUnavailable,
    NativeReadyError,
    RecursionLimitExceeded,
)


class TestPackage:

    def test_exports(self):
        for name in ("quick_check", "ReadinessScorer", "CacheService", "scan", "evaluate", "IRWalker"):
            assert name in nativeready.__all__
            assert hasattr(nativeready, name)

    def test_submodules(self):
        modules = nativeready.list_submodules()
        assert modules == sorted(modules)
        assert "escape_analysis" in modules
        assert "ci_gate" in modules

    def test_engine_info(self):
        info = nativeready.engine_info()
        assert info["version"] == "0.1.0"
        assert info["config"]["ready_threshold"] == 80
        assert info["config"]["weights"]["allocations"] == 25.0


class TestErrors:

    def test_ir_unavailable_message(self):
        err = IRUnavailable("not a Python function", "len(list)")
        assert str(err) == "len(list): not a Python function"
        assert err.reason == "not a Python function"
        assert str(IRUnavailable("no source")) == "no source"

    def test_analysis_tagging(self):
        err = AnalysisFailure("bad graph").with_analysis("escapes")
        assert err.analysis == "escapes"
        assert err.with_analysis("lifetimes").analysis == "escapes"

    def test_recursion_limit(self):
        err = RecursionLimitExceeded(analysis="monomorphization", depth=3)
        assert isinstance(err, AnalysisFailure)
        assert err.reason == "recursion depth exceeded"
        assert err.depth == 3

    def test_compilation_blocked_without_issues(self):
        err = CompilationBlocked("f(int)", 70, ())
        assert str(err).endswith("(score 70/100): below threshold")

    @pytest.mark.parametrize("exc_type", [IRUnavailable, AnalysisFailure, CompilationBlocked])
    def test_common_base(self, exc_type):
        assert issubclass(exc_type, NativeReadyError)
