"""
Result reporter.

Collects results while tests finish, prints one line per result in the
style of Playwright's list reporter, and on finalize writes the report files
and computes the exit code.
"""

import sys
from typing import Iterable, Optional, TextIO

from ..core.logging_config import get_logger
from ..execution.models import TestResult, TestStatus
from .generator import DEFAULT_FORMATS, ReportFormat, ReportGenerator
from .models import RunReport

STATUS_MARKS = {
    TestStatus.PASSED: "✓",
    TestStatus.FAILED: "✘",
    TestStatus.TIMED_OUT: "✘",
    TestStatus.SKIPPED: "-",
}


def format_result_line(result: TestResult, index: int) -> str:
    """Render one result as a list-reporter line."""
    line = f"  {STATUS_MARKS[result.status]} {index:>3} [{result.project}] › {result.title}"
    if result.status != TestStatus.SKIPPED:
        line += f" ({result.duration_ms}ms)"
    if result.retry:
        line += f" (retry #{result.retry})"
    if result.status == TestStatus.TIMED_OUT:
        line += " [timed out]"
    return line


class ResultReporter:
    """Records results into a RunReport and produces the run's exit code."""

    def __init__(
        self,
        report: RunReport,
        generator: Optional[ReportGenerator] = None,
        formats: Iterable[ReportFormat] = DEFAULT_FORMATS,
        stream: Optional[TextIO] = None,
    ):
        """
        Initialize the reporter.

        Args:
            report: Empty report for the current run
            generator: Writes report files on finalize; none are written without it
            formats: Report file formats to write
            stream: Where list output goes, stdout by default
        """
        self.report = report
        self.generator = generator
        self.formats = tuple(formats)
        self.stream = stream or sys.stdout
        self.logger = get_logger(__name__, run_id=report.run_id)

    def record(self, result: TestResult) -> None:
        """
        Record one result as soon as its test finishes.

        Raises:
            ReportingError: If a result with the same key was already recorded
        """
        key = self.report.add(result)
        print(format_result_line(result, len(self.report)), file=self.stream)

        if result.status.is_failure and result.failure_message:
            print(f"        {result.failure_message}", file=self.stream)

        self.logger.debug(f"Recorded result {key}", extra={"metadata": result.to_summary()})

    def finalize(self) -> int:
        """
        Freeze the report, write report files and print the summary.

        Returns:
            Process exit code: 0 when every executed test passed, 1 otherwise
        """
        self.report.finalize()

        if self.generator is not None:
            self.generator.generate(self.report, self.formats)

        self._print_summary()
        exit_code = self.report.exit_code
        self.logger.info(
            f"Run finished with exit code {exit_code}",
            extra={"metadata": self.report.summary.model_dump()},
        )
        return exit_code

    def _print_summary(self) -> None:
        summary = self.report.summary
        failures = [r for r in self.report.results if r.status.is_failure]
        flaky = [r for r in self.report.results if r.is_flaky]

        print("", file=self.stream)
        if failures:
            print(f"  {len(failures)} failed", file=self.stream)
            for result in failures:
                print(f"    [{result.project}] › {result.title}", file=self.stream)
        if flaky:
            print(f"  {len(flaky)} flaky", file=self.stream)
            for result in flaky:
                print(f"    [{result.project}] › {result.title}", file=self.stream)
        if summary.skipped:
            print(f"  {summary.skipped} skipped", file=self.stream)
        print(
            f"  {summary.passed} passed ({summary.duration_ms / 1000:.1f}s)",
            file=self.stream,
        )
