"""
Pytest configuration and shared fixtures for the E2E harness tests.

Provides an in-memory browser session standing in for Playwright, a session
provider handing it out, and configurations with short timeouts.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from e2e_harness.browser.session import BrowserSession, ElementState, SessionProvider
from e2e_harness.core.config import RunConfiguration
from e2e_harness.core.exceptions import SessionError
from e2e_harness.execution.artifacts import ArtifactStore
from e2e_harness.execution.executor import TestCaseExecutor
from e2e_harness.suite.loader import normalize_step
from e2e_harness.suite.models import Locator, TestCase

FAKE_PNG = b"\x89PNG\r\n\x1a\nfake-image"


@dataclass
class FakeElement:
    """One element of the fake page."""

    visible: bool = True
    text: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)


class FakeSession(BrowserSession):
    """
    Browser session over an in-memory page.

    Elements are keyed by the Playwright-style description of the locator
    that finds them, e.g. ``get_by_test_id('run-tests')``.
    """

    def __init__(self, project: str = "chromium"):
        self.project = project
        self.url = "about:blank"
        self.page_title = ""
        self.elements: Dict[str, List[FakeElement]] = {}
        self.routes: Dict[str, Callable[["FakeSession"], None]] = {}
        self.click_handlers: Dict[str, Callable[["FakeSession"], None]] = {}
        self.calls: List[tuple] = []
        self.failing_urls: set = set()
        self.screenshot_error: Optional[Exception] = None
        self.action_delay: float = 0
        self.tracing = False
        self.closed = False
        # Number of upcoming reads of a locator that see the element mid-update
        self.unsettled_reads: Dict[str, int] = {}
        self.cookies: List[dict] = []
        self.storage_reads = 0

    def set_elements(self, description: str, *elements: FakeElement) -> None:
        self.elements[description] = list(elements)

    def later(self, delay: float, callback: Callable[[], None]) -> None:
        asyncio.get_running_loop().call_later(delay, callback)

    async def goto(self, url: str, timeout_ms: int) -> None:
        self.calls.append(("goto", url))
        if url in self.failing_urls:
            raise SessionError(f"Navigation to {url} failed: net::ERR_CONNECTION_REFUSED",
                               project=self.project, operation="goto")
        self.url = url
        route = self.routes.get(url)
        if route is not None:
            route(self)

    async def count(self, locator: Locator) -> int:
        return len(self.elements.get(locator.describe(), []))

    async def fill(self, locator: Locator, value: str) -> None:
        self.calls.append(("fill", locator.describe(), value))
        self.elements[locator.describe()][0].attributes["value"] = value

    async def click(self, locator: Locator) -> None:
        if self.action_delay:
            await asyncio.sleep(self.action_delay)
        self.calls.append(("click", locator.describe()))
        handler = self.click_handlers.get(locator.describe())
        if handler is not None:
            handler(self)

    async def press(self, locator: Locator, key: str) -> None:
        self.calls.append(("press", locator.describe(), key))

    async def element_state(self, locator: Locator, attribute: Optional[str] = None) -> ElementState:
        matches = self.elements.get(locator.describe(), [])
        if len(matches) != 1:
            return ElementState(count=len(matches))
        if self.unsettled_reads.get(locator.describe(), 0) > 0:
            self.unsettled_reads[locator.describe()] -= 1
            return ElementState(count=1, settled=False)
        element = matches[0]
        return ElementState(
            count=1,
            visible=element.visible,
            text=element.text,
            attribute=element.attributes.get(attribute) if attribute else None,
        )

    async def current_url(self) -> str:
        return self.url

    async def title(self) -> str:
        return self.page_title

    async def screenshot(self) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return FAKE_PNG

    async def storage_state(self):
        self.storage_reads += 1
        return {"cookies": list(self.cookies), "origins": []}

    async def start_tracing(self) -> None:
        self.tracing = True

    async def stop_tracing(self, path: Path) -> None:
        self.tracing = False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"PK fake-trace")

    async def close(self) -> None:
        self.closed = True


class FakeProvider(SessionProvider):
    """Hands out fresh FakeSessions, prepared by an optional setup callback."""

    def __init__(self, setup: Optional[Callable[[FakeSession, int], None]] = None, open_failures: int = 0):
        self.setup = setup
        self.open_failures = open_failures
        self.sessions: List[FakeSession] = []
        self.started = False
        self.closed = False
        self.active = 0
        self.max_active = 0

    async def start(self) -> None:
        self.started = True

    async def open_session(self, project: str) -> BrowserSession:
        if self.open_failures > 0:
            self.open_failures -= 1
            raise SessionError("Browser closed unexpectedly", project=project, operation="open")

        session = _TrackedSession(self, project)
        if self.setup is not None:
            self.setup(session, len(self.sessions))
        self.sessions.append(session)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        return session

    async def close(self) -> None:
        self.closed = True


class _TrackedSession(FakeSession):
    def __init__(self, provider: FakeProvider, project: str):
        super().__init__(project)
        self._provider = provider

    async def close(self) -> None:
        if not self.closed:
            self._provider.active -= 1
        await super().close()


@pytest.fixture
def config(tmp_path):
    """Configuration with short timeouts and directories under tmp_path."""
    return RunConfiguration(
        base_url="http://localhost:3000",
        navigation_timeout_ms=1000,
        action_timeout_ms=300,
        expect_timeout_ms=300,
        test_timeout_ms=3000,
        workers=2,
        artifacts_dir=tmp_path / "artifacts",
        reports_dir=tmp_path / "reports",
        logs_dir=tmp_path / "logs",
    )


@pytest.fixture
def artifact_store(config):
    return ArtifactStore(config.artifacts_dir, "20240101-000000-abcdef12")


@pytest.fixture
def executor(config, artifact_store):
    return TestCaseExecutor(config, artifact_store)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def make_test_case():
    """Build a TestCase from steps written in compact form."""

    def _make(steps, id="TC-001", title="sample test", **fields):
        return TestCase.model_validate(
            {
                "id": id,
                "title": title,
                "steps": [normalize_step(step) for step in steps],
                **fields,
            }
        )

    return _make
