"""
Report file generation.

Writes the finalized run report as JSON, JUnit XML and Markdown. The XML and
Markdown layouts are Jinja2 templates; a template directory can override the
built-in ones.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, Template, TemplateNotFound

from ..core.exceptions import ReportingError
from .models import RunReport


class ReportFormat(Enum):
    """Report file formats."""

    JSON = "json"
    JUNIT = "junit"
    MARKDOWN = "markdown"


REPORT_FILE_NAMES = {
    ReportFormat.JSON: "report.json",
    ReportFormat.JUNIT: "junit.xml",
    ReportFormat.MARKDOWN: "report.md",
}

DEFAULT_FORMATS = (ReportFormat.JSON, ReportFormat.JUNIT)

JUNIT_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites name="e2e-harness {{ report.run_id }}" tests="{{ summary.total }}" failures="{{ summary.failed + summary.timed_out }}" skipped="{{ summary.skipped }}" errors="0" time="{{ '%.3f'|format(summary.duration_ms / 1000) }}">
{%- for project in report.projects %}
{%- set results = report.results|selectattr('project', 'equalto', project)|list %}
  <testsuite name="{{ project }}" tests="{{ results|length }}" failures="{{ results|selectattr('status.is_failure')|list|length }}" skipped="{{ results|selectattr('status.value', 'equalto', 'skipped')|list|length }}" errors="0">
  {%- for test in results %}
    <testcase name="{{ test.title }}" classname="{{ test.test_id }}" time="{{ '%.3f'|format(test.duration_ms / 1000) }}">
    {%- if test.status.is_failure %}
      <failure type="{{ test.error_type or test.status.value }}" message="{{ test.failure_message or 'Test failed' }}">{{ test.failure_message or test.status.value }}</failure>
    {%- elif test.status.value == 'skipped' %}
      <skipped/>
    {%- endif %}
    {%- if test.retry or test.artifacts %}
      <system-out>
      {%- if test.retry %}
retry #{{ test.retry }}
      {%- endif %}
      {%- for artifact in test.artifacts %}
[[ATTACHMENT|{{ artifact.path }}]]
      {%- endfor %}
      </system-out>
    {%- endif %}
    </testcase>
  {%- endfor %}
  </testsuite>
{%- endfor %}
</testsuites>
"""

MARKDOWN_TEMPLATE = """# E2E Test Report - {{ report.run_id }}

**Base URL:** {{ report.base_url }}
**Projects:** {{ report.projects|join(', ') }}
**Completed:** {{ report.completed_at }}

## Summary

- **Total Tests:** {{ summary.total }}
- **Passed:** {{ summary.passed }} ✅
- **Failed:** {{ summary.failed }} ❌
- **Timed Out:** {{ summary.timed_out }} ⏱️
- **Skipped:** {{ summary.skipped }} ⏭️
- **Flaky:** {{ summary.flaky }}
- **Success Rate:** {{ "%.1f"|format(summary.success_rate) }}%
- **Duration:** {{ "%.2f"|format(summary.duration_ms / 1000) }}s

## Test Results

| Test | Project | Status | Duration | Retry |
|------|---------|--------|----------|-------|
{% for test in report.results -%}
| {{ test.title }} | {{ test.project }} | {{ test.status.value }} | {{ "%.2f"|format(test.duration_ms / 1000) }}s | {{ test.retry }} |
{% endfor %}
{%- set failures = report.results|selectattr('status.is_failure')|list %}
{% if failures %}
## Failures
{% for test in failures %}
### {{ test.title }} ({{ test.project }})

{{ test.failure_message }}
{% for artifact in test.artifacts %}
- {{ artifact.kind.value }}: `{{ artifact.path }}`
{%- endfor %}
{% endfor %}
{% endif %}
"""


class ReportGenerator:
    """
    Generates report files for a finalized run.

    Supports JSON, JUnit XML and Markdown output.
    """

    def __init__(
        self,
        output_dir: Path,
        template_dir: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the report generator.

        Args:
            output_dir: Directory for generated reports
            template_dir: Directory with ``junit.xml`` / ``report.md`` overrides
            logger: Optional logger instance
        """
        self.output_dir = Path(output_dir)
        self.template_dir = Path(template_dir) if template_dir else None
        self.logger = logger or logging.getLogger(__name__)

        loader = FileSystemLoader(str(self.template_dir)) if self.template_dir else None
        self.xml_env = Environment(loader=loader, autoescape=True)
        self.text_env = Environment(loader=loader, autoescape=False)

    def _template(self, env: Environment, name: str, default: str) -> Template:
        if self.template_dir is not None:
            try:
                return env.get_template(name)
            except TemplateNotFound:
                self.logger.debug(f"No {name} override in {self.template_dir}, using built-in")
        return env.from_string(default)

    def render_junit(self, report: RunReport) -> str:
        template = self._template(self.xml_env, "junit.xml", JUNIT_TEMPLATE)
        return template.render(report=report, summary=report.summary)

    def render_markdown(self, report: RunReport) -> str:
        template = self._template(self.text_env, "report.md", MARKDOWN_TEMPLATE)
        return template.render(report=report, summary=report.summary)

    def render_json(self, report: RunReport) -> str:
        return json.dumps(report.to_dict(), indent=2, ensure_ascii=False, default=str)

    def generate(
        self, report: RunReport, formats: Iterable[ReportFormat] = DEFAULT_FORMATS
    ) -> Dict[ReportFormat, Path]:
        """
        Write the report in every requested format.

        Returns:
            Path written for each format

        Raises:
            ReportingError: If a report file cannot be written
        """
        renderers = {
            ReportFormat.JSON: self.render_json,
            ReportFormat.JUNIT: self.render_junit,
            ReportFormat.MARKDOWN: self.render_markdown,
        }

        written: Dict[ReportFormat, Path] = {}
        for report_format in formats:
            output_path = self.output_dir / REPORT_FILE_NAMES[report_format]
            try:
                output_path.parent.mkdir(parents=True, exist_ok=True)
                output_path.write_text(renderers[report_format](report), encoding="utf-8")
            except OSError as e:
                raise ReportingError(f"Failed to save {report_format.value} report: {e}") from e

            self.logger.info(f"Saved {report_format.value} report to: {output_path}")
            written[report_format] = output_path
        return written
