"""
Test case executor.

Runs the steps of one test case, in order, against one browser session.
Actions wait until their locator resolves to exactly one element;
assertions poll the page until they hold or their timeout elapses. The whole
sequence is bounded by the test timeout.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

from ..browser.session import BrowserSession, ElementState
from ..core.config import RunConfiguration
from ..core.exceptions import (
    ArtifactCaptureError,
    AssertionTimeout,
    HarnessError,
    LocatorResolutionError,
    SessionError,
)
from ..core.logging_config import get_logger
from ..suite.models import Locator, TestCase
from .artifacts import ArtifactStore
from .models import ArtifactKind, ArtifactRef, TestResult, TestStatus
from .polling import poll


@dataclass
class _AttemptState:
    """Mutable bookkeeping of one attempt while its steps run."""

    test_case: TestCase
    session: BrowserSession
    attempt: int
    base_url: str
    artifacts: List[ArtifactRef] = field(default_factory=list)
    steps_completed: int = 0
    current_step: Optional[str] = None
    captured: Dict[str, Optional[str]] = field(default_factory=dict)


def _strict(state: ElementState, locator: str) -> ElementState:
    """Assertions that need one element fail at once when several match."""
    if state.count > 1:
        raise LocatorResolutionError(
            f"Strict mode violation: {locator} resolved to {state.count} elements",
            locator=locator,
            match_count=state.count,
        )
    return state


def _read(state: ElementState, attribute: Optional[str]) -> Optional[str]:
    return state.attribute if attribute else state.text


def _observed(state: ElementState, observe: Callable[[ElementState], Any]) -> Any:
    """What an element assertion reports as received when it fails."""
    if state.count == 0:
        return "element not found"
    if not state.settled:
        return "element not readable"
    return observe(state)


def _nth_match(locator: Locator, index: int) -> Locator:
    """The locator narrowed to the n-th match of its parent, or of itself."""
    if locator.parent is not None:
        return locator.model_copy(update={"parent": locator.parent.model_copy(update={"nth": index})})
    return locator.model_copy(update={"nth": index})


class TestCaseExecutor:
    """Executes test cases step by step and turns the outcome into a TestResult."""

    __test__ = False

    def __init__(self, config: RunConfiguration, artifact_store: ArtifactStore):
        """
        Initialize the executor.

        Args:
            config: Run configuration with timeouts and artifact modes
            artifact_store: Storage for screenshots captured by tests
        """
        self.config = config
        self.artifact_store = artifact_store
        self.logger = get_logger(__name__, run_id=artifact_store.run_id)

    async def execute(
        self, test_case: TestCase, session: BrowserSession, attempt: int = 0
    ) -> TestResult:
        """
        Run every step of a test case against a session.

        Step failures never propagate: they end the test with status failed,
        or timedOut when the test timeout is exceeded.

        Args:
            test_case: Test case to run
            session: Fresh session owned by this attempt
            attempt: Index of the attempt, 0 for the first run

        Returns:
            Result of this attempt
        """
        logger = get_logger(
            __name__, test_id=test_case.id, project=session.project, attempt=attempt
        )
        state = _AttemptState(
            test_case=test_case,
            session=session,
            attempt=attempt,
            base_url=test_case.base_url or self.config.base_url,
        )

        started_at = datetime.now(timezone.utc)
        start_time = time.monotonic()
        status = TestStatus.PASSED
        failure_message: Optional[str] = None
        error_type: Optional[str] = None

        try:
            await asyncio.wait_for(
                self._run_steps(state), timeout=self.config.test_timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            status = TestStatus.TIMED_OUT
            failure_message = (
                f"Test timeout of {self.config.test_timeout_ms}ms exceeded"
                f" while running step {state.steps_completed + 1}: {state.current_step}"
            )
            error_type = "TimeoutError"
        except HarnessError as e:
            status = TestStatus.FAILED
            failure_message = e.message
            error_type = type(e).__name__
            logger.debug(f"Step failed: {e.message}", extra={"metadata": e.to_dict()})
        except Exception as e:
            status = TestStatus.FAILED
            failure_message = str(e) or repr(e)
            error_type = type(e).__name__
            logger.debug(f"Step raised {error_type}: {failure_message}")

        if status.is_failure and self.config.screenshot_mode == "only-on-failure":
            await self._capture(state, "failure")
        elif self.config.screenshot_mode == "on":
            await self._capture(state, "final")

        duration_ms = int((time.monotonic() - start_time) * 1000)
        result = TestResult(
            test_id=test_case.id,
            title=test_case.full_title,
            project=session.project,
            status=status,
            duration_ms=duration_ms,
            failure_message=failure_message,
            error_type=error_type,
            artifacts=tuple(state.artifacts),
            steps_completed=state.steps_completed,
            retry=attempt,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

        logger.info(
            f"Test {status.value}: {test_case.full_title}",
            extra={"metadata": result.to_summary()},
        )
        return result

    def session_failure_result(
        self, test_case: TestCase, project: str, attempt: int, error: SessionError
    ) -> TestResult:
        """Result of an attempt whose session could not be opened."""
        return TestResult(
            test_id=test_case.id,
            title=test_case.full_title,
            project=project,
            status=TestStatus.FAILED,
            duration_ms=0,
            failure_message=error.message,
            error_type=type(error).__name__,
            retry=attempt,
        )

    def skipped_result(self, test_case: TestCase, project: str) -> TestResult:
        return TestResult(
            test_id=test_case.id,
            title=test_case.full_title,
            project=project,
            status=TestStatus.SKIPPED,
            duration_ms=0,
        )

    async def _run_steps(self, state: _AttemptState) -> None:
        for step in state.test_case.steps:
            state.current_step = step.describe()
            self.logger.debug(
                f"Step {state.steps_completed + 1}: {state.current_step}",
                extra={"metadata": {"test_id": state.test_case.id, "action": step.action}},
            )
            handler = getattr(self, f"_step_{step.action}")
            await handler(state, step)
            state.steps_completed += 1

    # Actions

    async def _step_navigate(self, state: _AttemptState, step) -> None:
        url = urljoin(state.base_url, step.path)
        await state.session.goto(url, timeout_ms=self.config.navigation_timeout_ms)

    async def _step_fill(self, state: _AttemptState, step) -> None:
        await self._resolve_one(state.session, step.locator)
        await state.session.fill(step.locator, step.value)

    async def _step_click(self, state: _AttemptState, step) -> None:
        await self._resolve_one(state.session, step.locator)
        await state.session.click(step.locator)

    async def _step_press(self, state: _AttemptState, step) -> None:
        await self._resolve_one(state.session, step.locator)
        await state.session.press(step.locator, step.key)

    async def _step_screenshot(self, state: _AttemptState, step) -> None:
        await self._capture(state, step.label)

    async def _step_capture(self, state: _AttemptState, step) -> None:
        locator = step.locator.describe()
        timeout_ms = self.config.action_timeout_ms
        outcome = await poll(
            lambda: state.session.element_state(step.locator, step.attribute),
            lambda s: s.count == 1 and s.settled,
            timeout_ms,
        )
        if not outcome.satisfied:
            count = outcome.value.count if outcome.value is not None else 0
            raise LocatorResolutionError(
                f"{locator} could not be read within {timeout_ms}ms ({count} matching elements)",
                locator=locator,
                match_count=count,
            )

        value = _read(outcome.value, step.attribute)
        state.captured[step.store_as] = value
        self.logger.debug(f"Captured {step.store_as}={value!r} from {locator}")

    async def _resolve_one(self, session: BrowserSession, locator: Locator) -> None:
        """
        Wait until the locator matches exactly one element.

        Raises:
            LocatorResolutionError: If it matches zero or several elements
                when the action timeout elapses
        """
        timeout_ms = self.config.action_timeout_ms
        outcome = await poll(lambda: session.count(locator), lambda n: n == 1, timeout_ms)
        if outcome.satisfied:
            return

        description = locator.describe()
        if not outcome.value:
            message = f"{description} did not match any element within {timeout_ms}ms"
        else:
            message = (
                f"{description} resolved to {outcome.value} elements, expected exactly one"
            )
        raise LocatorResolutionError(message, locator=description, match_count=outcome.value or 0)

    # Assertions

    async def _expect(
        self,
        step,
        probe: Callable[[], Any],
        predicate: Callable[[Any], bool],
        expectation: str,
        received: Callable[[Any], Any],
        locator: Optional[str] = None,
    ) -> None:
        timeout_ms = step.timeout_ms or self.config.expect_timeout_ms
        outcome = await poll(probe, predicate, timeout_ms)
        if outcome.satisfied:
            return

        # None when not a single probe finished in time
        observed = received(outcome.value) if outcome.value is not None else None
        subject = locator or "page"
        raise AssertionTimeout(
            f"Timed out {timeout_ms}ms waiting for {subject} {expectation}"
            f"; received: {observed!r}",
            locator=locator,
            timeout_ms=timeout_ms,
            received=observed,
        )

    async def _expect_element(
        self,
        state: _AttemptState,
        step,
        check: Callable[[ElementState], bool],
        expectation: str,
        observe: Callable[[ElementState], Any],
        attribute: Optional[str] = None,
    ) -> None:
        """
        Poll an assertion about the element a step's locator resolves to.

        With ``each`` set on the step, every match of the locator's parent (or
        of the locator itself when it has none) is checked instead, and the
        assertion holds when all of them pass. No matches at all also pass.
        """
        session = state.session
        locator = step.locator.describe()

        if not getattr(step, "each", False):
            await self._expect(
                step,
                lambda: session.element_state(step.locator, attribute),
                lambda s: check(_strict(s, locator)),
                expectation,
                lambda s: _observed(s, observe),
                locator,
            )
            return

        collection = step.locator.parent if step.locator.parent is not None else step.locator

        async def probe() -> List[ElementState]:
            count = await session.count(collection)
            return [
                await session.element_state(_nth_match(step.locator, i), attribute)
                for i in range(count)
            ]

        await self._expect(
            step,
            probe,
            lambda states: all(check(_strict(s, locator)) for s in states),
            f"{expectation} for every match",
            lambda states: {
                i: _observed(s, observe) for i, s in enumerate(states) if not check(s)
            },
            locator,
        )

    async def _step_assert_visible(self, state: _AttemptState, step) -> None:
        await self._expect_element(
            state,
            step,
            lambda s: s.count == 1 and s.settled and s.visible,
            "to be visible",
            lambda s: "hidden",
        )

    async def _step_assert_hidden(self, state: _AttemptState, step) -> None:
        await self._expect_element(
            state,
            step,
            lambda s: s.count == 0 or (s.settled and not s.visible),
            "to be hidden",
            lambda s: "visible",
        )

    async def _step_assert_text(self, state: _AttemptState, step) -> None:
        await self._expect_element(
            state,
            step,
            lambda s: s.count == 1 and s.settled and step.pattern.matches(s.text, substring=True),
            f"to contain text {step.pattern.describe()}",
            lambda s: s.text,
        )

    async def _step_assert_attribute(self, state: _AttemptState, step) -> None:
        await self._expect_element(
            state,
            step,
            lambda s: s.count == 1 and s.settled and step.pattern.matches(s.attribute),
            f"to have attribute {step.name}={step.pattern.describe()}",
            lambda s: s.attribute,
            attribute=step.name,
        )

    async def _step_assert_changed(self, state: _AttemptState, step) -> None:
        before = state.captured[step.since]
        what = f"attribute {step.attribute}" if step.attribute else "text"
        await self._expect_element(
            state,
            step,
            lambda s: s.count == 1 and s.settled and _read(s, step.attribute) != before,
            f"to change {what} from {before!r} ({step.since})",
            lambda s: _read(s, step.attribute),
            attribute=step.attribute,
        )

    async def _step_assert_count(self, state: _AttemptState, step) -> None:
        await self._expect(
            step,
            lambda: state.session.count(step.locator),
            lambda n: n == step.count,
            f"to match {step.count} elements",
            lambda n: n,
            step.locator.describe(),
        )

    async def _step_assert_url(self, state: _AttemptState, step) -> None:
        pattern = step.pattern
        if not pattern.regex:
            # Relative URLs are compared against the base URL
            pattern = pattern.model_copy(update={"value": urljoin(state.base_url, pattern.value)})
        await self._expect(
            step,
            state.session.current_url,
            pattern.matches,
            f"to have URL {pattern.describe()}",
            lambda url: url,
        )

    async def _step_assert_title(self, state: _AttemptState, step) -> None:
        if step.pattern is None:
            predicate = lambda title: bool(title and title.strip())  # noqa: E731
            expectation = "to have a non-empty title"
        else:
            predicate = step.pattern.matches
            expectation = f"to have title {step.pattern.describe()}"
        await self._expect(step, state.session.title, predicate, expectation, lambda t: t)

    # Artifacts

    async def _capture(self, state: _AttemptState, label: str) -> None:
        """Capture a screenshot. Capture problems are logged and never fail the test."""
        test_id = state.test_case.id
        name = f"{test_id}_{label}.png"
        try:
            data = await state.session.screenshot()
            ref = self.artifact_store.save_bytes(
                state.session.project,
                test_id,
                state.attempt,
                name,
                data,
                ArtifactKind.SCREENSHOT,
                label=label,
            )
        except ArtifactCaptureError as e:
            self.logger.warning(f"Screenshot {name} not stored: {e.message}")
            return
        except Exception as e:
            error = ArtifactCaptureError(f"Screenshot {name} failed: {e}", name)
            self.logger.warning(error.message, extra={"metadata": error.to_dict()})
            return

        state.artifacts.append(ref)
