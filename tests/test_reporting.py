"""
Tests for report export/parse, comparison, history and text rendering.
"""

import json

import pytest

from nativeready import quick_check
from nativeready.errors import ReportFormatError
from nativeready.ir import AnalysisTarget
from nativeready.reporting import (
    append_history,
    compare,
    export,
    from_json,
    parse,
    read_history,
    render_text,
    score_trend,
    to_json,
)
from tests import samples
from tests.conftest import failed, make_report


class TestExportParse:

    def test_document_shape(self):
        doc = export(make_report("f(int)", 75, issues=["1 heap allocation(s)"], allocations=1))
        assert doc["target"] == "f(int)"
        assert doc["score"] == 75
        assert doc["ready_for_compilation"] is False
        assert doc["issues"] == ["1 heap allocation(s)"]
        assert doc["analyses"]["escapes"] == {"allocation_count": 1, "promotable": 0, "savings_bytes": 0}
        assert list(doc["analyses"]) == [
            "monomorphization", "escapes", "devirtualization", "constants", "lifetimes",
        ]

    def test_json_round_trip(self):
        report = quick_check(samples.leaky, int)
        parsed = from_json(to_json(report))
        assert parsed.target == report.target
        assert parsed.score == report.score
        assert parsed.ready == report.ready
        assert parsed.issues == report.issues
        assert parsed.lifetimes.potential_leaks == 1
        assert parsed.escapes.allocation_count == 1
        assert parsed.escapes.allocations == ()

    def test_failed_analysis_section(self):
        report = make_report("f(int)", 80, failures=(failed("devirtualization", "boom"),))
        doc = export(report)
        assert doc["analyses"]["devirtualization"] == {"failed": "boom"}
        parsed = parse(doc)
        assert parsed.devirtualization is None
        assert parsed.failures[0].reason == "boom"

    def test_invalid_json(self):
        with pytest.raises(ReportFormatError, match="invalid JSON"):
            from_json("{not json")

    def test_missing_field(self):
        doc = export(make_report())
        del doc["score"]
        with pytest.raises(ReportFormatError, match="score"):
            parse(doc)

    def test_boolean_is_not_a_score(self):
        doc = export(make_report())
        doc["score"] = True
        with pytest.raises(ReportFormatError):
            parse(doc)

    def test_score_out_of_range(self):
        doc = export(make_report())
        doc["score"] = 140
        with pytest.raises(ReportFormatError, match="outside"):
            parse(doc)

    def test_not_an_object(self):
        with pytest.raises(ReportFormatError):
            parse([1, 2, 3])


class TestCompare:

    def test_deltas(self):
        old = make_report("f(int)", 55, issues=["1 heap allocation(s)", "1 potential memory leak(s)"],
                          allocations=1, leaks=1)
        new = make_report("f(int)", 75, issues=["1 heap allocation(s)"], allocations=1)
        delta = compare(old, new)
        assert delta.score_delta == 20
        assert delta.metric_deltas["lifetimes.potential_leaks"] == -1.0
        assert delta.metric_deltas["escapes.allocation_count"] == 0.0
        assert delta.added_issues == ()
        assert delta.removed_issues == ("1 potential memory leak(s)",)
        assert delta.improved and not delta.regressed
        assert not delta.readiness_changed

    def test_antisymmetric(self):
        a = make_report("f(int)", 60, abstract=True, dynamic=1)
        b = make_report("f(int)", 100)
        forward, backward = compare(a, b), compare(b, a)
        assert forward.score_delta == -backward.score_delta
        for key, value in forward.metric_deltas.items():
            assert backward.metric_deltas[key] == -value

    def test_readiness_change(self):
        delta = compare(make_report(score=100), make_report(score=75))
        assert delta.readiness_changed
        assert delta.regressed

    def test_failed_sections_are_skipped(self):
        old = make_report(score=80, failures=(failed("escapes"),))
        delta = compare(old, make_report(score=100))
        assert not any(k.startswith("escapes.") for k in delta.metric_deltas)
        assert "lifetimes.proper_frees" in delta.metric_deltas

    def test_to_dict_is_json_serialisable(self):
        json.dumps(compare(make_report(score=60), make_report(score=100)).to_dict())


class TestHistory:

    def test_append_and_read(self, tmp_path):
        path = tmp_path / "nested" / "history.jsonl"
        target = AnalysisTarget(samples.add, (int, int))
        append_history(path, target, make_report("add(int, int)", 60))
        append_history(path, target, make_report("add(int, int)", 100))
        append_history(path, "other:g()", make_report("g()", 40))

        records = read_history(path, target)
        assert [r.report.score for r in records] == [60, 100]
        assert records[0].target == "tests.samples:add(int, int)"
        assert len(read_history(path)) == 3
        assert len(path.read_text().splitlines()) == 3

    def test_missing_file(self, tmp_path):
        assert read_history(tmp_path / "absent.jsonl") == []

    def test_blank_lines_skipped(self, tmp_path):
        path = tmp_path / "h.jsonl"
        append_history(path, "t", make_report())
        with path.open("a") as fh:
            fh.write("\n\n")
        append_history(path, "t", make_report())
        assert len(read_history(path)) == 2

    def test_malformed_line_names_location(self, tmp_path):
        path = tmp_path / "h.jsonl"
        append_history(path, "t", make_report())
        with path.open("a") as fh:
            fh.write("{broken\n")
        with pytest.raises(ReportFormatError, match=r"h\.jsonl:2"):
            read_history(path)

    def test_record_missing_field(self, tmp_path):
        path = tmp_path / "h.jsonl"
        path.write_text(json.dumps({"timestamp": "x", "target": "t"}) + "\n")
        with pytest.raises(ReportFormatError, match="report"):
            read_history(path)


class TestScoreTrend:

    def test_trend(self, tmp_path):
        path = tmp_path / "h.jsonl"
        for score in (50, 70, 65):
            append_history(path, "t", make_report(score=score))
        trend = score_trend(read_history(path, "t"))
        assert trend.scores == (50, 70, 65)
        assert trend.current == 65
        assert (trend.best, trend.worst) == (70, 50)
        assert trend.average == 62
        assert trend.total_change == 15
        assert trend.recent_change == -5
        assert trend.direction == "down"

    def test_single_record_is_flat(self, tmp_path):
        path = tmp_path / "h.jsonl"
        append_history(path, "t", make_report(score=90))
        assert score_trend(read_history(path)).direction == "flat"

    def test_empty(self):
        assert score_trend([]) is None


class TestRenderText:

    def test_ready_report(self):
        text = render_text(quick_check(samples.add, int, int))
        assert "NATIVE COMPILATION READINESS" in text
        assert "Score         : 100 / 100  (READY)" in text
        assert "ISSUES (0):" in text
        assert "  none" in text

    def test_failed_analysis(self):
        report = make_report(score=80, issues=["AnalysisFailed[escapes]: boom"],
                             failures=(failed("escapes", "boom"),))
        text = render_text(report)
        assert "FAILED: boom" in text
        assert "NOT READY" in text
        assert "  - AnalysisFailed[escapes]: boom" in text
