"""
Parallel suite runner.

Selects the tests to run, expands them over every browser project and runs
the resulting jobs concurrently, bounded by the configured worker count.
"""

import asyncio
import re
from typing import List, Optional, Sequence, Tuple

from ..browser.session import PlaywrightSessionProvider, SessionProvider
from ..core.config import RunConfiguration
from ..core.exceptions import ConfigurationError
from ..core.logging_config import get_logger, timed
from ..reporting.generator import DEFAULT_FORMATS, ReportGenerator
from ..reporting.models import RunReport
from ..reporting.reporter import ResultReporter
from ..suite.models import TestCase
from .artifacts import ArtifactStore
from .executor import TestCaseExecutor
from .retry import RetryPolicy


class SuiteRunner:
    """Runs test cases across browser projects and feeds results to a reporter."""

    def __init__(
        self,
        config: RunConfiguration,
        retry_policy: RetryPolicy,
        reporter: ResultReporter,
        grep: Optional[str] = None,
    ):
        self.config = config
        self.retry_policy = retry_policy
        self.reporter = reporter
        try:
            self.grep = re.compile(grep) if grep else None
        except re.error as e:
            raise ConfigurationError(f"Invalid --grep pattern: {e}", setting="grep", value=grep) from e
        self.logger = get_logger(__name__)

    def select(self, test_cases: Sequence[TestCase]) -> List[TestCase]:
        """
        Apply ``only`` focus and the title filter.

        Raises:
            ConfigurationError: If a test is focused while ``only`` is forbidden
        """
        focused = [t for t in test_cases if t.only]
        if focused:
            if self.config.forbid_only:
                raise ConfigurationError(
                    f"Focused tests are not allowed in CI: {[t.id for t in focused]}",
                    setting="forbid_only",
                    value="true",
                )
            test_cases = focused

        if self.grep is not None:
            test_cases = [
                t for t in test_cases if self.grep.search(t.full_title) or self.grep.search(t.id)
            ]
        return list(test_cases)

    def plan(self, test_cases: Sequence[TestCase]) -> List[Tuple[TestCase, str]]:
        """Every selected test paired with every browser project."""
        return [(t, project) for t in self.select(test_cases) for project in self.config.projects]

    @timed("suite_run")
    async def run(self, test_cases: Sequence[TestCase]) -> RunReport:
        """
        Run the test cases and record every result.

        Returns:
            The reporter's run report, not yet finalized
        """
        jobs = self.plan(test_cases)
        semaphore = asyncio.Semaphore(self.config.workers)

        self.logger.info(
            f"Running {len(jobs)} tests using {self.config.workers} workers",
            extra={
                "metadata": {
                    "jobs": len(jobs),
                    "workers": self.config.workers,
                    "projects": self.config.projects,
                }
            },
        )

        async def run_job(test_case: TestCase, project: str) -> None:
            if test_case.skip:
                result = self.retry_policy.executor.skipped_result(test_case, project)
            else:
                async with semaphore:
                    result = await self.retry_policy.run_with_retries(test_case, project)
            self.reporter.record(result)

        await asyncio.gather(*(run_job(t, project) for t, project in jobs))
        return self.reporter.report


async def run_suites(
    config: RunConfiguration,
    test_cases: Sequence[TestCase],
    run_id: str,
    provider: Optional[SessionProvider] = None,
    grep: Optional[str] = None,
    formats=None,
    stream=None,
) -> int:
    """
    Run test cases with a session provider and write the run report.

    Args:
        config: Resolved run configuration
        test_cases: Loaded test cases
        run_id: Identifier of this run
        provider: Session provider; Playwright when omitted
        grep: Regular expression selecting tests by title or id
        formats: Report file formats to write
        stream: Where list output goes

    Returns:
        Exit code of the run

    Raises:
        ConfigurationError: If the selection is invalid; raised before any
            browser is started
    """
    store = ArtifactStore(config.artifacts_dir, run_id)
    executor = TestCaseExecutor(config, store)
    report = RunReport(run_id, config.projects, config.base_url)
    reporter = ResultReporter(
        report,
        ReportGenerator(config.reports_dir),
        formats or DEFAULT_FORMATS,
        stream,
    )

    provider = provider or PlaywrightSessionProvider(config)
    runner = SuiteRunner(config, RetryPolicy(config, provider, executor, store), reporter, grep)
    runner.plan(test_cases)

    async with provider:
        await runner.run(test_cases)

    exit_code = reporter.finalize()
    store.cleanup_expired_runs(config.artifact_retention_days)
    return exit_code
