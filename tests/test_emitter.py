"""Tests for report rendering, the gate decision and artifact writing."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET

import pytest

from valgate.domain.errors import ReportWriteError
from valgate.domain.models import (
    ExecutionStatus,
    Issue,
    IssueType,
    RegressionResult,
    Severity,
)
from valgate.modules.aggregator.core import aggregate
from valgate.modules.emitter.core import (
    build_annotations,
    emit,
    gate_decision,
    parse_formats,
    regression_from_dict,
    render_html,
    render_junit,
    render_structured,
    render_summary,
    render_workflow_commands,
    report_to_dict,
)


def _regression(severity: Severity, percentage: float = 18.6, **fields) -> RegressionResult:
    return RegressionResult(
        task_name=fields.pop("task_name", "input-system"),
        platform=fields.pop("platform", "desktop"),
        regression_detected=severity is not Severity.NONE,
        current_score=7.0,
        baseline_score=8.6,
        regression_percentage=percentage,
        severity=severity,
        **fields,
    )


@pytest.fixture()
def passed_report(make_result):
    return aggregate([make_result(), make_result(platform="mobile", score=8.0)])


@pytest.fixture()
def failed_report(make_result, critical_issue):
    return aggregate(
        [
            make_result(),
            make_result(
                task_name="audio",
                status=ExecutionStatus.FAILED,
                score=3.0,
                issues=(critical_issue,),
            ),
        ]
    )


class TestGate:
    def test_passed_without_regressions(self, passed_report) -> None:
        assert gate_decision(passed_report, []) is True

    def test_blocking_status(self, failed_report) -> None:
        assert gate_decision(failed_report, []) is False

    def test_no_results_blocks(self) -> None:
        assert gate_decision(aggregate([]), []) is False

    def test_critical_regression_blocks(self, passed_report) -> None:
        assert gate_decision(passed_report, [_regression(Severity.CRITICAL, 40.0)]) is False

    def test_major_regression_does_not_block(self, passed_report) -> None:
        assert gate_decision(passed_report, [_regression(Severity.MAJOR)]) is True


class TestFormats:
    def test_aliases_and_order(self) -> None:
        assert parse_formats("json, junit,summary,structured") == (
            "structured",
            "junit",
            "summary",
        )

    def test_unknown_format(self) -> None:
        with pytest.raises(ValueError, match="Unknown output format 'pdf'"):
            parse_formats("json,pdf")


class TestStructured:
    def test_keys_and_values(self, passed_report) -> None:
        document = report_to_dict(passed_report, [_regression(Severity.MAJOR)], True)

        assert document["overallStatus"] == "PASSED"
        assert document["overallScore"] == 9
        assert document["totalTasks"] == 2
        assert set(document["platformSummary"]) == {"desktop", "mobile"}
        assert document["taskDetails"]["input-system"]["platforms"]["mobile"]["score"] == 8.0
        assert document["regressions"][0]["severity"] == "MAJOR"
        assert document["gatePassed"] is True

    def test_results_carry_one_record_each(self, failed_report) -> None:
        document = report_to_dict(failed_report, [], False)

        assert [(r["taskName"], r["status"]) for r in document["results"]] == [
            ("audio", "FAILED"),
            ("input-system", "PASSED"),
        ]
        assert document["results"][0]["issues"][0]["category"] == "performance"

    def test_regressions_read_back(self, passed_report) -> None:
        document = json.loads(
            render_structured(passed_report, [_regression(Severity.MAJOR)], True)
        )

        assert regression_from_dict(document["regressions"][0]) == _regression(Severity.MAJOR)

    def test_render_is_valid_json(self, passed_report) -> None:
        assert json.loads(render_structured(passed_report, [], True))["gatePassed"] is True


class TestAnnotations:
    def test_one_record_per_issue_and_regression(self, failed_report) -> None:
        annotations = build_annotations(failed_report, [_regression(Severity.MINOR, 12.0)])

        assert [(a.level, a.task, a.category) for a in annotations] == [
            ("error", "audio", "performance"),
            ("warning", "input-system", "regression"),
        ]
        assert "12.00%" in annotations[1].message

    def test_workflow_commands_escape_newlines(self, make_result) -> None:
        issue = Issue(type=IssueType.WARNING, category="setup", message="line one\nline two")
        report = aggregate([make_result(status=ExecutionStatus.WARNING, issues=(issue,))])

        commands = render_workflow_commands(build_annotations(report, []))

        assert commands == [
            "::warning title=input-system [desktop]::setup: line one%0Aline two"
        ]


class TestSummary:
    def test_states_regression_percentage_and_severity(self, passed_report) -> None:
        summary = render_summary(passed_report, [_regression(Severity.MAJOR)], True)

        assert "## Regressions" in summary
        assert "-18.60%" in summary
        assert "MAJOR" in summary
        assert "## Gate Blocked" not in summary

    def test_blocked_gate_lists_causes(self, failed_report) -> None:
        critical = _regression(Severity.CRITICAL, 40.0, task_name="input-system")
        summary = render_summary(failed_report, [critical], False)

        assert "## Gate Blocked" in summary
        assert "Overall status is FAILED." in summary
        assert "regressed 40.00% (severity CRITICAL)" in summary
        assert "audio [desktop] performance: frame time too high" in summary

    def test_established_baselines_mentioned(self, passed_report) -> None:
        established = RegressionResult(
            task_name="input-system",
            platform="desktop",
            regression_detected=False,
            current_score=9.0,
            baseline_score=None,
            regression_percentage=0.0,
            severity=Severity.NONE,
            baseline_established=True,
        )

        summary = render_summary(passed_report, [established], True)

        assert "New baselines established for 1" in summary


def test_junit(failed_report, make_result) -> None:
    root = ET.fromstring(render_junit(failed_report).split("\n", 1)[1])
    cases = root.findall("./testsuite/testcase")

    assert root.find("testsuite").get("tests") == "2"
    assert [c.get("classname") for c in cases] == ["audio", "input-system"]
    assert cases[0].find("failure") is not None
    assert cases[1].find("failure") is None


class TestEmit:
    def test_writes_requested_formats(self, passed_report, memory_fs) -> None:
        written = emit(passed_report, [], True, ("structured", "summary"), memory_fs, "reports")

        assert written == ("reports/validation-report.json", "reports/validation-summary.md")
        assert set(memory_fs.files) == set(written)

    def test_write_failure_is_fatal(self, passed_report) -> None:
        class ReadOnlyFileSystem:
            def write_file(self, path: str, content: str) -> None:
                raise PermissionError(path)

        with pytest.raises(ReportWriteError, match="structured"):
            emit(passed_report, [], True, ("structured",), ReadOnlyFileSystem(), "reports")


class TestHtml:
    def test_page_contents(self, failed_report) -> None:
        critical = _regression(Severity.CRITICAL, 40.0)

        page = render_html(failed_report, [critical], False)

        assert page.startswith("<!DOCTYPE html>\n<html lang=\"en\">")
        assert "<h2>Gate Blocked</h2>" in page
        assert "regressed 40.00% (severity CRITICAL)" in page
        assert '<span class="status-failed">FAILED</span>' in page
        assert "<h2>Regressions</h2>" in page

    def test_text_is_escaped(self, make_result) -> None:
        report = aggregate([make_result(summary="<script>alert(1)</script> & more")])

        page = render_html(report, [], True)

        assert "<script>" not in page
        assert "&lt;script&gt;alert(1)&lt;/script&gt; &amp; more" in page
        assert "Gate Blocked" not in page

    def test_written_as_its_own_file(self, passed_report, memory_fs) -> None:
        assert parse_formats("html,json") == ("html", "structured")

        written = emit(passed_report, [], True, ("html",), memory_fs, "reports")

        assert written == ("reports/validation-report.html",)
        assert "Validation Report" in memory_fs.files["reports/validation-report.html"]
