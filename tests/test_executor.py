"""
Unit tests for the test case executor.

Runs test cases against the in-memory FakeSession: form flows that pass and
fail, locator strictness, every assertion kind, screenshots and the test
timeout.
"""

import dataclasses

import pytest
from conftest import FAKE_PNG, FakeElement

from e2e_harness.execution.executor import TestCaseExecutor
from e2e_harness.execution.models import ArtifactKind, TestStatus

EMAIL = "get_by_test_id('email')"
CONTINUE = "get_by_role('button', name='Continue')"
HEADING = "get_by_role('heading', name='Welcome')"

FORM_FLOW = [
    {"navigate": "/login"},
    {"fill": {"test_id": "email", "value": "user@example.com"}},
    {"click": {"role": "button", "name": "Continue"}},
    {"assert_visible": {"role": "heading", "name": "Welcome"}},
]


def _form_page(session):
    """A login form that greets the user shortly after a valid email is submitted."""
    session.set_elements(EMAIL, FakeElement())
    session.set_elements(CONTINUE, FakeElement(text="Continue"))

    def submit(s):
        if "@" in s.elements[EMAIL][0].attributes.get("value", ""):
            s.later(0.1, lambda: s.set_elements(HEADING, FakeElement(text="Welcome")))

    session.click_handlers[CONTINUE] = submit


class TestFormFlow:
    """Fill, click, then wait for the result to show up."""

    @pytest.mark.asyncio
    async def test_successful_submission_passes(self, executor, session, make_test_case):
        _form_page(session)
        test_case = make_test_case(FORM_FLOW, id="TC_POS_001")

        result = await executor.execute(test_case, session)

        assert result.status == TestStatus.PASSED
        assert result.steps_completed == 4
        assert result.failure_message is None
        assert result.artifacts == ()
        assert session.calls[:3] == [
            ("goto", "http://localhost:3000/login"),
            ("fill", EMAIL, "user@example.com"),
            ("click", CONTINUE),
        ]

    @pytest.mark.asyncio
    async def test_invalid_input_fails_with_assertion_timeout(self, executor, session, make_test_case):
        _form_page(session)
        steps = list(FORM_FLOW)
        steps[1] = {"fill": {"test_id": "email", "value": "invalidpass"}}
        test_case = make_test_case(steps, id="TC_NEG_001")

        result = await executor.execute(test_case, session)

        assert result.status == TestStatus.FAILED
        assert result.error_type == "AssertionTimeout"
        assert "Timed out 300ms waiting for" in result.failure_message
        assert HEADING in result.failure_message
        assert result.steps_completed == 3

    @pytest.mark.asyncio
    async def test_failure_screenshot_is_captured(self, executor, session, make_test_case):
        test_case = make_test_case([{"assert_visible": {"test_id": "missing"}}], id="TC-9")

        result = await executor.execute(test_case, session)

        (screenshot,) = result.artifacts
        assert screenshot.name == "TC-9_failure.png"
        assert screenshot.kind == ArtifactKind.SCREENSHOT
        assert "attempt-0" in screenshot.path


class TestNavigation:
    """Test cases for the navigate step."""

    @pytest.mark.asyncio
    async def test_suite_base_url_overrides_configuration(self, executor, session, make_test_case):
        test_case = make_test_case(
            [{"navigate": "/Form/Edit?Id=265cf80f"}], base_url="https://app.leadsquared.com"
        )

        await executor.execute(test_case, session)

        assert session.calls == [("goto", "https://app.leadsquared.com/Form/Edit?Id=265cf80f")]

    @pytest.mark.asyncio
    async def test_absolute_url_is_used_as_is(self, executor, session, make_test_case):
        await executor.execute(make_test_case([{"navigate": "https://other.example.com/x"}]), session)

        assert session.calls == [("goto", "https://other.example.com/x")]

    @pytest.mark.asyncio
    async def test_navigation_failure_fails_the_test(self, executor, session, make_test_case):
        session.failing_urls.add("http://localhost:3000/")
        test_case = make_test_case([{"navigate": "/"}, {"click": "button"}])

        result = await executor.execute(test_case, session)

        assert result.status == TestStatus.FAILED
        assert result.error_type == "SessionError"
        assert result.steps_completed == 0
        assert ("click", "locator('button')") not in session.calls


class TestLocatorResolution:
    """Actions need exactly one element."""

    @pytest.mark.asyncio
    async def test_missing_element(self, executor, session, make_test_case):
        result = await executor.execute(make_test_case([{"click": {"test_id": "nav-tests"}}]), session)

        assert result.status == TestStatus.FAILED
        assert result.error_type == "LocatorResolutionError"
        assert "did not match any element" in result.failure_message

    @pytest.mark.asyncio
    async def test_ambiguous_element(self, executor, session, make_test_case):
        session.set_elements("locator('li')", FakeElement(), FakeElement())

        result = await executor.execute(make_test_case([{"click": "li"}]), session)

        assert result.error_type == "LocatorResolutionError"
        assert "resolved to 2 elements" in result.failure_message
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_action_waits_for_element(self, executor, session, make_test_case):
        session.later(0.1, lambda: session.set_elements("get_by_test_id('later')", FakeElement()))

        result = await executor.execute(make_test_case([{"click": {"test_id": "later"}}]), session)

        assert result.status == TestStatus.PASSED
        assert session.calls == [("click", "get_by_test_id('later')")]

    @pytest.mark.asyncio
    async def test_strict_assertion_fails_immediately(self, executor, session, make_test_case):
        session.set_elements("get_by_role('button')", FakeElement(), FakeElement())
        test_case = make_test_case(
            [{"assert_visible": {"role": "button", "timeout_ms": 5000}}]
        )

        result = await executor.execute(test_case, session)

        assert result.error_type == "LocatorResolutionError"
        assert "Strict mode violation" in result.failure_message
        assert result.duration_ms < 5000


class TestAssertions:
    """Test cases for each assertion kind."""

    @pytest.mark.asyncio
    async def test_assert_text_uses_substring_and_regex(self, executor, session, make_test_case):
        session.set_elements("get_by_test_id('search-results-info')", FakeElement(text="3 results for Smoke"))
        test_case = make_test_case(
            [
                {"assert_text": {"test_id": "search-results-info", "pattern": "results for"}},
                {"assert_text": {"test_id": "search-results-info", "pattern": "/smoke/i"}},
            ]
        )

        assert (await executor.execute(test_case, session)).status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_assert_text_reports_received_value(self, executor, session, make_test_case):
        session.set_elements("get_by_test_id('run-logs')", FakeElement(text="started"))
        test_case = make_test_case([{"assert_text": {"test_id": "run-logs", "pattern": "/completed/i"}}])

        result = await executor.execute(test_case, session)

        assert result.error_type == "AssertionTimeout"
        assert "received: 'started'" in result.failure_message

    @pytest.mark.asyncio
    async def test_assert_attribute(self, executor, session, make_test_case):
        session.set_elements("locator('html')", FakeElement(attributes={"data-theme": "dark"}))
        passing = make_test_case(
            [{"assert_attribute": {"locator": {"css": "html"}, "name": "data-theme", "pattern": "/dark|light/"}}]
        )
        failing = make_test_case(
            [{"assert_attribute": {"locator": {"css": "html"}, "name": "data-theme", "pattern": "da"}}]
        )

        assert (await executor.execute(passing, session)).status == TestStatus.PASSED
        assert (await executor.execute(failing, session)).status == TestStatus.FAILED

    @pytest.mark.asyncio
    async def test_assert_hidden(self, executor, session, make_test_case):
        session.set_elements("get_by_test_id('settings-modal')", FakeElement(visible=True))
        session.later(0.05, lambda: session.set_elements("get_by_test_id('settings-modal')"))
        test_case = make_test_case([{"assert_hidden": {"test_id": "settings-modal"}}])

        assert (await executor.execute(test_case, session)).status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_assert_count(self, executor, session, make_test_case):
        session.set_elements("locator('li')", FakeElement(), FakeElement(), FakeElement())
        test_case = make_test_case(
            [
                {"assert_count": {"css": "li", "count": 3}},
                {"assert_count": {"test_id": "nothing", "count": 0}},
            ]
        )

        assert (await executor.execute(test_case, session)).status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_assert_url(self, executor, session, make_test_case):
        session.url = "http://localhost:3000/tests"
        test_case = make_test_case(
            [{"assert_url": "/.*\\/tests/"}, {"assert_url": "/tests"}]
        )

        assert (await executor.execute(test_case, session)).status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_assert_title(self, executor, session, make_test_case):
        session.page_title = "React App"

        assert (await executor.execute(make_test_case([{"assert_title": None}]), session)).status == TestStatus.PASSED
        assert (await executor.execute(make_test_case([{"assert_title": "React App"}]), session)).status == TestStatus.PASSED

        session.page_title = ""
        result = await executor.execute(make_test_case([{"assert_title": None}]), session)
        assert result.status == TestStatus.FAILED

    @pytest.mark.asyncio
    async def test_element_read_mid_update_is_polled_again(self, executor, session, make_test_case):
        session.set_elements("get_by_test_id('run-logs')", FakeElement(text="run completed"))
        session.unsettled_reads["get_by_test_id('run-logs')"] = 2
        test_case = make_test_case([{"assert_text": {"test_id": "run-logs", "pattern": "/completed/i", "timeout_ms": 2000}}])

        result = await executor.execute(test_case, session)

        assert result.status == TestStatus.PASSED
        assert session.unsettled_reads["get_by_test_id('run-logs')"] == 0

    @pytest.mark.asyncio
    async def test_element_never_readable_is_reported(self, executor, session, make_test_case):
        session.set_elements("get_by_test_id('run-logs')", FakeElement(text="run completed"))
        session.unsettled_reads["get_by_test_id('run-logs')"] = 1000
        test_case = make_test_case([{"assert_visible": {"test_id": "run-logs"}}])

        result = await executor.execute(test_case, session)

        assert result.error_type == "AssertionTimeout"
        assert "received: 'element not readable'" in result.failure_message


ROWS = "locator('[data-testid=\"test-row\"]')"


def _row(index):
    return f"{ROWS}.nth({index})"


class TestCapturedValues:
    """Capture a value, act, then wait for it to change."""

    THEME_TOGGLE = [
        {"capture": {"css": "html", "attribute": "data-theme", "store_as": "theme_before"}},
        {"click": {"test_id": "theme-toggle"}},
        {"assert_changed": {"css": "html", "attribute": "data-theme", "since": "theme_before"}},
    ]

    @pytest.mark.asyncio
    async def test_changed_attribute_passes(self, executor, session, make_test_case):
        session.set_elements("locator('html')", FakeElement(attributes={"data-theme": "light"}))
        session.set_elements("get_by_test_id('theme-toggle')", FakeElement())

        def toggle(s):
            s.later(0.05, lambda: s.elements["locator('html')"][0].attributes.update({"data-theme": "dark"}))

        session.click_handlers["get_by_test_id('theme-toggle')"] = toggle

        result = await executor.execute(make_test_case(self.THEME_TOGGLE), session)

        assert result.status == TestStatus.PASSED
        assert result.steps_completed == 3

    @pytest.mark.asyncio
    async def test_unchanged_attribute_fails(self, executor, session, make_test_case):
        session.set_elements("locator('html')", FakeElement(attributes={"data-theme": "light"}))
        session.set_elements("get_by_test_id('theme-toggle')", FakeElement())

        result = await executor.execute(make_test_case(self.THEME_TOGGLE), session)

        assert result.status == TestStatus.FAILED
        assert result.error_type == "AssertionTimeout"
        assert "to change attribute data-theme from 'light' (theme_before)" in result.failure_message
        assert "received: 'light'" in result.failure_message

    @pytest.mark.asyncio
    async def test_missing_attribute_counts_as_a_value(self, executor, session, make_test_case):
        session.set_elements("locator('html')", FakeElement())
        session.set_elements("get_by_test_id('theme-toggle')", FakeElement())
        session.click_handlers["get_by_test_id('theme-toggle')"] = (
            lambda s: s.elements["locator('html')"][0].attributes.update({"data-theme": "dark"})
        )

        result = await executor.execute(make_test_case(self.THEME_TOGGLE), session)

        assert result.status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_changed_text(self, executor, session, make_test_case):
        button = "get_by_role('button', name=/dark|light/i)"
        session.set_elements(button, FakeElement(text="🌙 Dark"))
        session.click_handlers[button] = lambda s: setattr(s.elements[button][0], "text", "☀️ Light")
        test_case = make_test_case(
            [
                {"capture": {"role": "button", "name": "/dark|light/i", "store_as": "text_before"}},
                {"click": {"role": "button", "name": "/dark|light/i"}},
                {"assert_changed": {"role": "button", "name": "/dark|light/i", "since": "text_before"}},
            ]
        )

        assert (await executor.execute(test_case, session)).status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_capture_of_missing_element_fails(self, executor, session, make_test_case):
        result = await executor.execute(make_test_case(self.THEME_TOGGLE), session)

        assert result.error_type == "LocatorResolutionError"
        assert "could not be read" in result.failure_message
        assert result.steps_completed == 0


class TestEveryMatch:
    """Assertions with ``each`` check every match."""

    BADGES = [
        {
            "assert_visible": {
                "test_id": "status-badge-passed",
                "parent": {"css": '[data-testid="test-row"]'},
                "each": True,
            }
        }
    ]

    def _rows(self, session, *passed):
        session.set_elements(ROWS, *[FakeElement() for _ in passed])
        for index, ok in enumerate(passed):
            if ok:
                session.set_elements(f"{_row(index)}.get_by_test_id('status-badge-passed')", FakeElement())

    @pytest.mark.asyncio
    async def test_every_row_has_a_badge(self, executor, session, make_test_case):
        self._rows(session, True, True, True)

        assert (await executor.execute(make_test_case(self.BADGES), session)).status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_one_row_without_badge_fails(self, executor, session, make_test_case):
        self._rows(session, True, False, True)

        result = await executor.execute(make_test_case(self.BADGES), session)

        assert result.error_type == "AssertionTimeout"
        assert "to be visible for every match" in result.failure_message
        assert "'element not found'" in result.failure_message

    @pytest.mark.asyncio
    async def test_no_rows_pass(self, executor, session, make_test_case):
        assert (await executor.execute(make_test_case(self.BADGES), session)).status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_every_match_contains_text(self, executor, session, make_test_case):
        step = {"assert_text": {"css": '[data-testid="test-row"]', "pattern": "/smoke/i", "each": True}}
        session.set_elements(ROWS, FakeElement(), FakeElement())
        session.set_elements(_row(0), FakeElement(text="Smoke: login"))
        session.set_elements(_row(1), FakeElement(text="smoke: checkout"))

        assert (await executor.execute(make_test_case([step]), session)).status == TestStatus.PASSED

        session.set_elements(_row(1), FakeElement(text="Regression: checkout"))
        result = await executor.execute(make_test_case([step]), session)

        assert result.status == TestStatus.FAILED
        assert "'Regression: checkout'" in result.failure_message



class TestScreenshots:
    """Test cases for screenshot steps and screenshot modes."""

    @pytest.mark.asyncio
    async def test_screenshot_step_is_recorded_in_order(self, executor, session, make_test_case):
        test_case = make_test_case(
            [{"screenshot": "before-toggle"}, {"screenshot": "after-toggle"}], id="THEME-002"
        )

        result = await executor.execute(test_case, session)

        assert [a.name for a in result.artifacts] == [
            "THEME-002_before-toggle.png",
            "THEME-002_after-toggle.png",
        ]
        assert [a.label for a in result.artifacts] == ["before-toggle", "after-toggle"]

    @pytest.mark.asyncio
    async def test_capture_failure_does_not_fail_the_test(self, executor, session, make_test_case):
        session.screenshot_error = RuntimeError("Target page has been closed")

        result = await executor.execute(make_test_case([{"screenshot": "success"}]), session)

        assert result.status == TestStatus.PASSED
        assert result.artifacts == ()

    @pytest.mark.asyncio
    async def test_artifacts_captured_before_failure_are_kept(self, executor, session, make_test_case):
        test_case = make_test_case(
            [{"screenshot": "email-entered"}, {"click": {"test_id": "missing"}}], id="TC-2"
        )

        result = await executor.execute(test_case, session)

        assert [a.name for a in result.artifacts] == ["TC-2_email-entered.png", "TC-2_failure.png"]

    @pytest.mark.asyncio
    async def test_screenshot_mode_on_captures_final(self, config, artifact_store, session, make_test_case):
        executor = TestCaseExecutor(dataclasses.replace(config, screenshot_mode="on"), artifact_store)

        result = await executor.execute(make_test_case([], id="T-1"), session)

        assert [a.name for a in result.artifacts] == ["T-1_final.png"]
        with open(result.artifacts[0].path, "rb") as f:
            assert f.read() == FAKE_PNG

    @pytest.mark.asyncio
    async def test_screenshot_mode_off(self, config, artifact_store, session, make_test_case):
        executor = TestCaseExecutor(dataclasses.replace(config, screenshot_mode="off"), artifact_store)

        result = await executor.execute(make_test_case([{"click": "missing"}]), session)

        assert result.status == TestStatus.FAILED
        assert result.artifacts == ()


class TestTestTimeout:
    """The whole test is bounded by the test timeout."""

    @pytest.mark.asyncio
    async def test_slow_test_times_out(self, config, artifact_store, session, make_test_case):
        executor = TestCaseExecutor(dataclasses.replace(config, test_timeout_ms=200), artifact_store)
        session.set_elements("get_by_test_id('slow')", FakeElement())
        session.action_delay = 1.0

        result = await executor.execute(make_test_case([{"click": {"test_id": "slow"}}]), session)

        assert result.status == TestStatus.TIMED_OUT
        assert "Test timeout of 200ms exceeded" in result.failure_message
        assert "click get_by_test_id('slow')" in result.failure_message
        assert result.duration_ms < 1000
