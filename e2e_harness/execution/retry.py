"""
Retry and isolation policy.

Every attempt of a test runs in a brand new browser session that is closed
when the attempt ends, whatever its outcome. A session that already holds
cookies or origin storage when it opens fails the attempt. Failed and
timed-out attempts are re-run until the retry budget is used up.
"""

from typing import List, Optional

from ..browser.session import BrowserSession, SessionProvider
from ..core.config import RunConfiguration
from ..core.exceptions import ArtifactCaptureError, SessionError
from ..core.logging_config import get_logger
from ..suite.models import TestCase
from .artifacts import ArtifactStore
from .executor import TestCaseExecutor
from .models import ArtifactKind, AttemptRecord, TestResult, TestStatus


class RetryPolicy:
    """Runs a test case with retries, isolating every attempt."""

    def __init__(
        self,
        config: RunConfiguration,
        provider: SessionProvider,
        executor: TestCaseExecutor,
        artifact_store: ArtifactStore,
    ):
        self.config = config
        self.provider = provider
        self.executor = executor
        self.artifact_store = artifact_store
        self.logger = get_logger(__name__, run_id=artifact_store.run_id)

    def should_trace(self, attempt: int) -> bool:
        """Whether a Playwright trace is recorded for this attempt."""
        if self.config.trace_mode == "on":
            return True
        if self.config.trace_mode == "on-first-retry":
            return attempt == 1
        return False

    async def run_with_retries(
        self, test_case: TestCase, project: str, max_retries: Optional[int] = None
    ) -> TestResult:
        """
        Run a test case until it passes or the retries are exhausted.

        Args:
            test_case: Test case to run
            project: Browser project to run it on
            max_retries: Extra attempts allowed after a failure; defaults to
                the configured retries

        Returns:
            Result of the last attempt, with the earlier attempts summarised
        """
        if max_retries is None:
            max_retries = self.config.retries

        history: List[AttemptRecord] = []
        attempt = 0
        while True:
            result = await self._run_attempt(test_case, project, attempt)
            if not result.status.is_failure or attempt >= max_retries:
                break

            history.append(result.to_attempt_record())
            attempt += 1
            self.logger.info(
                f"Retrying {test_case.id} on {project} (retry #{attempt})",
                extra={
                    "metadata": {
                        "test_id": test_case.id,
                        "project": project,
                        "attempt": attempt,
                        "previous_status": result.status.value,
                    }
                },
            )

        if result.is_flaky:
            self.logger.warning(
                f"Test {test_case.id} is flaky: passed on retry #{result.retry}",
                extra={"metadata": {"test_id": test_case.id, "project": project}},
            )
        return result.model_copy(update={"previous_attempts": tuple(history)})

    async def _run_attempt(self, test_case: TestCase, project: str, attempt: int) -> TestResult:
        try:
            session = await self.provider.open_session(project)
        except SessionError as e:
            self.logger.error(
                f"Could not open session for {test_case.id}: {e.message}",
                extra={"metadata": e.to_dict()},
            )
            return self.executor.session_failure_result(test_case, project, attempt, e)

        try:
            try:
                await self._ensure_fresh(session, project)
            except SessionError as e:
                self.logger.error(
                    f"Session for {test_case.id} is not isolated: {e.message}",
                    extra={"metadata": e.to_dict()},
                )
                return self.executor.session_failure_result(test_case, project, attempt, e)

            tracing = self.should_trace(attempt) and await self._start_tracing(session)
            result = await self.executor.execute(test_case, session, attempt)
            if tracing:
                trace = await self._stop_tracing(session, test_case, project, attempt)
                if trace is not None:
                    result = result.model_copy(update={"artifacts": result.artifacts + (trace,)})
            return result
        finally:
            try:
                await session.close()
            except Exception as e:
                self.logger.warning(f"Failed to close session for {test_case.id}: {e}")

    async def _ensure_fresh(self, session: BrowserSession, project: str) -> None:
        """
        Check that a new session carries no cookies or origin storage.

        Raises:
            SessionError: If state from an earlier session is present
        """
        try:
            storage = await session.storage_state()
        except Exception as e:
            self.logger.warning(f"Could not read storage state of new session: {e}")
            return

        cookies = storage.get("cookies") or []
        origins = storage.get("origins") or []
        if cookies or origins:
            raise SessionError(
                f"New session starts with leftover state: {len(cookies)} cookies,"
                f" {len(origins)} origins with storage",
                project=project,
                operation="open",
            )

    async def _start_tracing(self, session: BrowserSession) -> bool:
        try:
            await session.start_tracing()
        except Exception as e:
            self.logger.warning(f"Could not start tracing: {e}")
            return False
        return True

    async def _stop_tracing(
        self, session: BrowserSession, test_case: TestCase, project: str, attempt: int
    ):
        path = self.artifact_store.attempt_dir(project, test_case.id, attempt) / "trace.zip"
        try:
            await session.stop_tracing(path)
            return self.artifact_store.register_file(path, ArtifactKind.TRACE, label="trace")
        except ArtifactCaptureError as e:
            self.logger.warning(f"Trace not stored: {e.message}")
        except Exception as e:
            self.logger.warning(f"Could not stop tracing: {e}")
        return None
