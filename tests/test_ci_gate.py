"""
Tests for the quality gate, CI report files and the readiness precondition.
"""

import json

import pytest

from nativeready.ci_gate import check, evaluate, require_ready, write_ci_report
from nativeready.errors import CompilationBlocked
from tests.conftest import failed, make_report


def _batch():
    return [
        make_report("add(int, int)", 100),
        make_report("pair(int)", 90),
        make_report("local_list(int)", 75, issues=["1 heap allocation(s)"], allocations=1),
        make_report("leaky(int)", 50, issues=["1 heap allocation(s)", "1 potential memory leak(s)"],
                    allocations=1, leaks=1),
        make_report("variadic()", 0, issues=["AnalysisFailed: variadic parameter 'args' is not supported"]),
    ]


class TestEvaluate:

    def test_failing_batch(self):
        result = evaluate(_batch(), 60, 70)
        assert not result.passed
        assert result.total == 5
        assert result.ready_count == 2
        assert result.ready_percent == 40
        assert result.average_score == 63
        assert len(result.reasons) == 2
        assert result.reasons[0].startswith("ready percentage too low: 40% < 60%")
        assert result.reasons[1].startswith("average score too low: 63 < 70")

    def test_all_ready_passes(self):
        result = evaluate([make_report(score=100), make_report(score=85)])
        assert result.passed
        assert result.reasons == ()
        assert result.ready_percent == 100

    def test_failures_block_the_gate(self):
        reports = [make_report("f(int)", 100), make_report("g(int)", 80, failures=(failed("constants", fatal=False),))]
        result = evaluate(reports, min_ready_percent=0, min_avg_score=0)
        assert not result.passed
        assert result.reasons == ("1 target(s) with analysis failures: g(int)",)

    def test_mapping_input(self):
        reports = {"a": make_report(score=100), "b": make_report(score=90)}
        assert evaluate(reports).total == 2

    def test_empty_input_fails(self):
        result = evaluate([])
        assert not result.passed
        assert result.reasons == ("no targets analysed",)

    def test_check_returns_bool(self):
        assert check([make_report(score=100)]) is True
        assert check(_batch()) is False

    def test_to_dict(self):
        doc = evaluate(_batch(), 60, 70).to_dict()
        assert doc["passed"] is False
        assert doc["reasons"][0].startswith("ready percentage")


class TestWriteCiReport:

    def test_files_written(self, tmp_path):
        md_path, json_path = write_ci_report(_batch(), tmp_path / "ci" / "readiness")
        assert md_path == tmp_path / "ci" / "readiness.md"
        assert json_path == tmp_path / "ci" / "readiness.json"

        summary = json.loads(json_path.read_text())
        assert summary["total_functions"] == 5
        assert summary["ready_functions"] == 2
        assert summary["average_score"] == 63
        assert summary["pass_rate"] == 40.0
        assert summary["issue_summary"]["1 heap allocation(s)"] == 2
        assert summary["functions"]["leaky(int)"]["ready"] is False

        text = md_path.read_text()
        assert "**Status**: ❌ Not Ready" in text
        assert "## Common Issues" in text
        assert "- **1 heap allocation(s)**: 2 function(s)" in text
        assert "### `leaky(int)` (Score: 50/100)" in text
        assert "### `add(int, int)`" not in text

    def test_rows_ranked_by_score(self, tmp_path):
        md_path, _ = write_ci_report(_batch(), tmp_path / "r")
        rows = [line for line in md_path.read_text().splitlines() if line.startswith("| `")]
        assert rows[0].startswith("| `add(int, int)` | 100/100 | ✅")
        assert rows[-1].startswith("| `variadic()` | 0/100 | ❌")

    def test_all_ready(self, tmp_path):
        md_path, _ = write_ci_report([make_report(score=100)], tmp_path / "r")
        text = md_path.read_text()
        assert "✅ All Ready" in text
        assert "All functions are ready for compilation!" in text
        assert "## Common Issues" not in text


class TestRequireReady:

    def test_ready_report_is_returned(self):
        report = make_report(score=100)
        assert require_ready(report) is report

    def test_blocked(self):
        report = make_report("leaky(int)", 55, issues=["1 potential memory leak(s)"])
        with pytest.raises(CompilationBlocked) as info:
            require_ready(report)
        assert info.value.score == 55
        assert "leaky(int) is not ready for native compilation (score 55/100)" in str(info.value)
        assert info.value.issues == ["1 potential memory leak(s)"]
