"""Report emitter: render reports and decide the gate.

Renderers are pure functions from an ``AggregateReport`` plus regression
results to text. ``emit`` writes the selected formats through a
``FileSystemPort`` and is the only function here with side effects.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from valgate.domain.errors import ReportWriteError
from valgate.domain.models import (
    AggregateReport,
    Annotation,
    ExecutionStatus,
    IssueType,
    RegressionResult,
    Severity,
)
from valgate.modules.aggregator.core import result_to_record

if TYPE_CHECKING:
    from valgate.domain.ports import FileSystemPort

logger = logging.getLogger("valgate.emitter")

BLOCKING_STATUSES = frozenset(
    {ExecutionStatus.FAILED, ExecutionStatus.ERROR, ExecutionStatus.NO_RESULTS}
)

STATUS_ICONS = {
    ExecutionStatus.PASSED: "✅",
    ExecutionStatus.WARNING: "⚠️",
    ExecutionStatus.FAILED: "❌",
    ExecutionStatus.ERROR: "\U0001f4a5",
    ExecutionStatus.NO_RESULTS: "❓",
}

FORMAT_ALIASES = {
    "structured": "structured",
    "json": "structured",
    "ci": "ci",
    "annotations": "ci",
    "summary": "summary",
    "markdown": "summary",
    "human": "summary",
    "junit": "junit",
    "html": "html",
}


def parse_formats(text: str) -> tuple[str, ...]:
    """Parse a comma-separated format list into canonical names, in order.

    Raises:
        ValueError: on an unknown format name.
    """
    formats: list[str] = []
    for raw in text.split(","):
        name = raw.strip().lower()
        if not name:
            continue
        if name not in FORMAT_ALIASES:
            choices = ", ".join(sorted(FORMAT_ALIASES))
            msg = f"Unknown output format '{name}' (choose from {choices})"
            raise ValueError(msg)
        canonical = FORMAT_ALIASES[name]
        if canonical not in formats:
            formats.append(canonical)
    return tuple(formats)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


def blocking_regressions(regressions: Sequence[RegressionResult]) -> list[RegressionResult]:
    return [r for r in regressions if r.severity is Severity.CRITICAL]


def gate_decision(report: AggregateReport, regressions: Sequence[RegressionResult]) -> bool:
    """False blocks the pipeline: a blocking status or any CRITICAL regression."""
    if report.overall_status in BLOCKING_STATUSES:
        return False
    return not blocking_regressions(regressions)


# ---------------------------------------------------------------------------
# Structured document
# ---------------------------------------------------------------------------


def _regression_to_dict(r: RegressionResult) -> dict[str, Any]:
    return {
        "taskName": r.task_name,
        "platform": r.platform,
        "regressionDetected": r.regression_detected,
        "currentScore": r.current_score,
        "baselineScore": r.baseline_score,
        "regressionPercentage": r.regression_percentage,
        "severity": r.severity.value,
        "affectedCategories": list(r.affected_categories),
        "recommendedActions": list(r.recommended_actions),
        "baselineEstablished": r.baseline_established,
    }


def regression_from_dict(data: Mapping[str, Any]) -> RegressionResult:
    """Rebuild a regression from a structured report entry.

    Raises:
        KeyError, TypeError, ValueError: on a malformed entry.
    """
    baseline = data.get("baselineScore")
    return RegressionResult(
        task_name=str(data["taskName"]),
        platform=str(data["platform"]),
        regression_detected=bool(data["regressionDetected"]),
        current_score=float(data["currentScore"]),
        baseline_score=None if baseline is None else float(baseline),
        regression_percentage=float(data.get("regressionPercentage", 0.0)),
        severity=Severity(data["severity"]),
        affected_categories=tuple(str(c) for c in data.get("affectedCategories") or ()),
        recommended_actions=tuple(str(a) for a in data.get("recommendedActions") or ()),
        baseline_established=bool(data.get("baselineEstablished", False)),
    )


def report_to_dict(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    gate_passed: bool,
) -> dict[str, Any]:
    """Mirror the report one-to-one with stable camelCase names and ordering."""
    return {
        "overallStatus": report.overall_status.value,
        "overallScore": report.overall_score,
        "totalTasks": report.total_tasks,
        "passedTasks": report.passed_tasks,
        "warningTasks": report.warning_tasks,
        "failedTasks": report.failed_tasks,
        "errorTasks": report.error_tasks,
        "totalCriticalIssues": report.total_critical_issues,
        "totalWarnings": report.total_warnings,
        "totalExecutionTimeMs": report.total_execution_time_ms,
        "rejectedResults": report.rejected_results,
        "timestamp": report.timestamp,
        "platformSummary": {
            p.platform: {
                "totalTasks": p.total_tasks,
                "passedTasks": p.passed_tasks,
                "warningTasks": p.warning_tasks,
                "failedTasks": p.failed_tasks,
                "errorTasks": p.error_tasks,
                "passRate": p.pass_rate,
                "meanScore": p.mean_score,
                "totalExecutionTimeMs": p.total_execution_time_ms,
            }
            for p in report.platform_summary
        },
        "taskDetails": {
            t.task_name: {
                "status": t.status.value,
                "meanScore": t.mean_score,
                "bestScore": t.best_score,
                "worstScore": t.worst_score,
                "totalExecutionTimeMs": t.total_execution_time_ms,
                "platforms": {
                    platform: {
                        "status": outcome.status.value,
                        "score": outcome.score,
                        "executionTimeMs": outcome.execution_time_ms,
                        "summary": outcome.summary,
                    }
                    for platform, outcome in t.platforms
                },
                "issues": [
                    {"type": i.type.value, "category": i.category, "message": i.message}
                    for i in t.issues
                ],
            }
            for t in report.task_details
        },
        "recommendations": [
            {
                "priority": r.priority.value,
                "scope": r.scope,
                "target": r.target,
                "message": r.message,
            }
            for r in report.recommendations
        ],
        "results": [result_to_record(r) for r in report.results],
        "regressions": [_regression_to_dict(r) for r in regressions],
        "gatePassed": gate_passed,
    }


def render_structured(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    gate_passed: bool,
) -> str:
    document = report_to_dict(report, regressions, gate_passed)
    return json.dumps(document, indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# CI annotations
# ---------------------------------------------------------------------------


def build_annotations(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
) -> list[Annotation]:
    """One record per issue, then one per detected regression."""
    annotations = [
        Annotation(
            level="error" if issue.type is IssueType.CRITICAL else "warning",
            task=result.task_name,
            platform=result.platform,
            category=issue.category,
            message=issue.message,
        )
        for result in report.results
        for issue in result.issues
    ]
    for r in regressions:
        if not r.regression_detected:
            continue
        annotations.append(
            Annotation(
                level="error" if r.severity is Severity.CRITICAL else "warning",
                task=r.task_name,
                platform=r.platform,
                category="regression",
                message=_regression_sentence(r),
            )
        )
    return annotations


def render_annotations(annotations: Sequence[Annotation]) -> str:
    lines = [
        json.dumps(
            {
                "level": a.level,
                "task": a.task,
                "platform": a.platform,
                "category": a.category,
                "message": a.message,
            },
            ensure_ascii=False,
        )
        for a in annotations
    ]
    return "\n".join(lines) + ("\n" if lines else "")


def _escape_command(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def render_workflow_commands(annotations: Sequence[Annotation]) -> list[str]:
    """GitHub Actions ``::error``/``::warning`` workflow command lines."""
    return [
        f"::{a.level} title={_escape_command(f'{a.task} [{a.platform}]')}::"
        f"{_escape_command(f'{a.category}: {a.message}')}"
        for a in annotations
    ]


# ---------------------------------------------------------------------------
# Human-readable summary
# ---------------------------------------------------------------------------


def _regression_sentence(r: RegressionResult) -> str:
    return (
        f"{r.task_name} on {r.platform} regressed {r.regression_percentage:.2f}% "
        f"(severity {r.severity.value}): score {r.current_score:.2f} vs baseline "
        f"{r.baseline_score:.2f}"
    )


def blocking_causes(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
) -> list[str]:
    """Sentences naming why the gate blocked: status, regressions, critical issues."""
    causes: list[str] = []
    if report.overall_status in BLOCKING_STATUSES:
        causes.append(f"Overall status is {report.overall_status.value}.")
    causes += [f"{_regression_sentence(r)}." for r in blocking_regressions(regressions)]
    causes += [
        f"{result.task_name} [{result.platform}] {issue.category}: {issue.message}"
        for result in report.results
        for issue in result.issues
        if issue.type is IssueType.CRITICAL
    ]
    return causes


def render_summary(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    gate_passed: bool,
) -> str:
    """Markdown summary; blocking causes are always stated explicitly."""
    status = report.overall_status
    lines = [
        "# Validation Summary",
        "",
        f"**Generated:** {report.timestamp or 'n/a'}  ",
        f"**Overall Status:** {STATUS_ICONS[status]} {status.value}  ",
        f"**Overall Score:** {report.overall_score}/10  ",
        f"**Gate:** {'passed' if gate_passed else 'blocked'}",
        "",
        "## Executive Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total Tasks | {report.total_tasks} |",
        f"| Passed Tasks | {report.passed_tasks} |",
        f"| Warning Tasks | {report.warning_tasks} |",
        f"| Failed Tasks | {report.failed_tasks} |",
        f"| Error Tasks | {report.error_tasks} |",
        f"| Critical Issues | {report.total_critical_issues} |",
        f"| Warnings | {report.total_warnings} |",
        f"| Total Execution Time | {round(report.total_execution_time_ms / 1000)}s |",
    ]
    if report.rejected_results:
        lines.append(f"| Rejected Results | {report.rejected_results} |")

    if not gate_passed:
        lines += ["", "## Gate Blocked", ""]
        lines += [f"- {cause}" for cause in blocking_causes(report, regressions)]

    if report.task_details:
        lines += ["", "## Task Results", ""]
        for task in report.task_details:
            lines += [
                f"### {task.task_name}",
                "",
                f"**Status:** {STATUS_ICONS[task.status]} {task.status.value}  ",
                f"**Score:** {task.mean_score:.2f}/10  ",
                f"**Platforms:** {len(task.platforms)}  ",
                f"**Execution Time:** {round(task.total_execution_time_ms / 1000)}s",
                "",
            ]
            for platform, outcome in task.platforms:
                lines.append(
                    f"- **{platform}:** {STATUS_ICONS[outcome.status]} {outcome.status.value} "
                    f"({outcome.score:.2f}/10)"
                )
            lines.append("")

    if report.platform_summary:
        lines += [
            "## Platform Summary",
            "",
            "| Platform | Tasks | Passed | Failed | Errors | Pass Rate | Mean Score |",
            "|----------|-------|--------|--------|--------|-----------|------------|",
        ]
        for p in report.platform_summary:
            lines.append(
                f"| {p.platform} | {p.total_tasks} | {p.passed_tasks} | {p.failed_tasks} "
                f"| {p.error_tasks} | {p.pass_rate * 100:.0f}% | {p.mean_score:.2f}/10 |"
            )

    detected = [r for r in regressions if r.regression_detected]
    established = [r for r in regressions if r.baseline_established]
    if detected or established:
        lines += ["", "## Regressions", ""]
        if detected:
            lines += [
                "| Task | Platform | Baseline | Current | Change | Severity |",
                "|------|----------|----------|---------|--------|----------|",
            ]
            for r in detected:
                lines.append(
                    f"| {r.task_name} | {r.platform} | {r.baseline_score:.2f} "
                    f"| {r.current_score:.2f} | -{r.regression_percentage:.2f}% "
                    f"| {r.severity.value} |"
                )
        if established:
            lines.append("")
            lines.append(f"New baselines established for {len(established)} task/platform pair(s).")

    if report.recommendations:
        lines += ["", "## Recommendations", ""]
        for i, rec in enumerate(report.recommendations, start=1):
            lines.append(f"{i}. **[{rec.priority.value}] {rec.target}:** {rec.message}")

    lines += ["", "## Next Steps", ""]
    if gate_passed:
        lines += [
            "1. **Deploy:** the build passed validation.",
            "2. **Monitor:** watch performance metrics in production.",
        ]
    else:
        lines += [
            "1. Review the blocking causes above.",
            "2. Address critical issues and regressions.",
            "3. Re-run validation after fixes.",
        ]
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# JUnit XML
# ---------------------------------------------------------------------------


def render_junit(report: AggregateReport) -> str:
    """One ``testcase`` per task×platform result inside a single suite."""
    suite = ET.Element(
        "testsuite",
        {
            "name": "valgate",
            "tests": str(report.total_tasks),
            "failures": str(report.failed_tasks),
            "errors": str(report.error_tasks),
            "time": f"{report.total_execution_time_ms / 1000:.3f}",
            "timestamp": report.timestamp,
        },
    )
    for result in report.results:
        case = ET.SubElement(
            suite,
            "testcase",
            {
                "classname": result.task_name,
                "name": result.platform,
                "time": f"{result.execution_time_ms / 1000:.3f}",
            },
        )
        if result.status is ExecutionStatus.FAILED:
            failure = ET.SubElement(
                case,
                "failure",
                {
                    "message": f"Validation failed with score {result.score:.2f}/10",
                    "type": "ValidationFailure",
                },
            )
            failure.text = result.summary
        elif result.status is ExecutionStatus.ERROR:
            error = ET.SubElement(
                case, "error", {"message": result.summary, "type": "ExecutionError"}
            )
            error.text = result.summary
        if result.issues:
            out = ET.SubElement(case, "system-out")
            out.text = "\n".join(
                f"[{i.type.value}] {i.category}: {i.message}" for i in result.issues
            )
    root = ET.Element("testsuites")
    root.append(suite)
    ET.indent(root)
    return ET.tostring(root, encoding="unicode", xml_declaration=True) + "\n"


# ---------------------------------------------------------------------------
# HTML page
# ---------------------------------------------------------------------------

_HTML_STYLE = """
body { font-family: Arial, sans-serif; margin: 20px; }
.header { background: #f5f5f5; padding: 20px; border-radius: 5px; margin-bottom: 20px; }
.metric { display: inline-block; margin: 10px 20px 10px 0; }
table { border-collapse: collapse; margin-bottom: 20px; }
th, td { border: 1px solid #ddd; padding: 6px 12px; text-align: left; }
.status-passed { color: #28a745; font-weight: bold; }
.status-warning { color: #b8860b; font-weight: bold; }
.status-failed, .status-error, .status-no_results { color: #dc3545; font-weight: bold; }
"""


def _html_table(parent: ET.Element, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
    table = ET.SubElement(parent, "table")
    head = ET.SubElement(table, "tr")
    for header in headers:
        ET.SubElement(head, "th").text = header
    for row in rows:
        tr = ET.SubElement(table, "tr")
        for cell in row:
            ET.SubElement(tr, "td").text = cell


def _html_status(parent: ET.Element, status: ExecutionStatus) -> None:
    ET.SubElement(parent, "span", {"class": f"status-{status.value.lower()}"}).text = (
        status.value
    )


def render_html(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    gate_passed: bool,
) -> str:
    """Standalone page with the headline metrics, per-result table and gate causes."""
    root = ET.Element("html", {"lang": "en"})
    head = ET.SubElement(root, "head")
    ET.SubElement(head, "meta", {"charset": "UTF-8"})
    ET.SubElement(head, "title").text = "Validation Report"
    ET.SubElement(head, "style").text = _HTML_STYLE
    body = ET.SubElement(root, "body")

    header = ET.SubElement(body, "div", {"class": "header"})
    ET.SubElement(header, "h1").text = "Validation Report"
    status_metric = ET.SubElement(header, "div", {"class": "metric"})
    status_metric.text = "Overall Status: "
    _html_status(status_metric, report.overall_status)
    metrics = [
        f"Overall Score: {report.overall_score}/10",
        f"Tasks: {report.total_tasks}",
        f"Passed: {report.passed_tasks}",
        f"Failed: {report.failed_tasks}",
        f"Errors: {report.error_tasks}",
        f"Gate: {'passed' if gate_passed else 'blocked'}",
    ]
    if report.rejected_results:
        metrics.append(f"Rejected: {report.rejected_results}")
    for text in metrics:
        ET.SubElement(header, "div", {"class": "metric"}).text = text
    if report.timestamp:
        ET.SubElement(header, "p").text = f"Generated {report.timestamp}"

    if not gate_passed:
        ET.SubElement(body, "h2").text = "Gate Blocked"
        causes = ET.SubElement(body, "ul")
        for cause in blocking_causes(report, regressions):
            ET.SubElement(causes, "li").text = cause

    if report.results:
        ET.SubElement(body, "h2").text = "Results"
        table = ET.SubElement(body, "table")
        head_row = ET.SubElement(table, "tr")
        for title in ("Task", "Platform", "Status", "Score", "Time", "Summary"):
            ET.SubElement(head_row, "th").text = title
        for result in report.results:
            row = ET.SubElement(table, "tr")
            ET.SubElement(row, "td").text = result.task_name
            ET.SubElement(row, "td").text = result.platform
            _html_status(ET.SubElement(row, "td"), result.status)
            ET.SubElement(row, "td").text = f"{result.score:.2f}"
            ET.SubElement(row, "td").text = f"{result.execution_time_ms / 1000:.1f}s"
            ET.SubElement(row, "td").text = result.summary

    detected = [r for r in regressions if r.regression_detected]
    if detected:
        ET.SubElement(body, "h2").text = "Regressions"
        _html_table(
            body,
            ("Task", "Platform", "Baseline", "Current", "Change", "Severity"),
            [
                (
                    r.task_name,
                    r.platform,
                    f"{r.baseline_score or 0.0:.2f}",
                    f"{r.current_score:.2f}",
                    f"-{r.regression_percentage:.2f}%",
                    r.severity.value,
                )
                for r in detected
            ],
        )

    if report.recommendations:
        ET.SubElement(body, "h2").text = "Recommendations"
        items = ET.SubElement(body, "ol")
        for rec in report.recommendations:
            ET.SubElement(items, "li").text = f"[{rec.priority.value}] {rec.target}: {rec.message}"

    return "<!DOCTYPE html>\n" + ET.tostring(root, encoding="unicode", method="html") + "\n"


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

_Renderer = Callable[[AggregateReport, Sequence[RegressionResult], bool], str]


def _render_ci(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    gate_passed: bool,
) -> str:
    return render_annotations(build_annotations(report, regressions))


def _render_junit(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    gate_passed: bool,
) -> str:
    return render_junit(report)


# Canonical format name -> (file name, renderer).
RENDERERS: dict[str, tuple[str, _Renderer]] = {
    "structured": ("validation-report.json", render_structured),
    "ci": ("validation-annotations.jsonl", _render_ci),
    "summary": ("validation-summary.md", render_summary),
    "junit": ("validation-junit.xml", _render_junit),
    "html": ("validation-report.html", render_html),
}


def emit(
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    gate_passed: bool,
    formats: Sequence[str],
    fs: FileSystemPort,
    output_dir: str,
) -> tuple[str, ...]:
    """Render and write every requested format; return the written paths.

    Raises:
        ReportWriteError: when any artifact cannot be written.
    """
    written: list[str] = []
    for name in formats:
        filename, renderer = RENDERERS[name]
        path = f"{output_dir}/{filename}" if output_dir else filename
        content = renderer(report, regressions, gate_passed)
        try:
            fs.write_file(path, content)
        except OSError as exc:
            msg = f"Cannot write {name} report to {path}: {exc}"
            raise ReportWriteError(msg) from exc
        logger.info("Wrote %s report to %s", name, path)
        written.append(path)
    return tuple(written)
