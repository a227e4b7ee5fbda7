"""
Browser session management.

Defines the session contract the executor drives, and its implementation on
top of Playwright. Each session owns a fresh browser context, so cookies,
storage and pages never leak between test attempts.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Pattern, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..core.config import KNOWN_PROJECTS, RunConfiguration
from ..core.exceptions import SessionError
from ..suite.models import Locator, TextPattern

# Bound on each read of an element state; the caller polls again afterwards
STATE_READ_TIMEOUT_MS = 1000


@dataclass(frozen=True)
class ElementState:
    """Snapshot of what a locator matched at one point in time."""

    count: int
    visible: bool = False
    text: Optional[str] = None
    attribute: Optional[str] = None
    # False when the element changed or detached while it was being read
    settled: bool = True


class BrowserSession(ABC):
    """One isolated browser context with a single page."""

    project: str

    @abstractmethod
    async def goto(self, url: str, timeout_ms: int) -> None:
        """Navigate the page and wait for the load event."""

    @abstractmethod
    async def count(self, locator: Locator) -> int:
        """Count the elements the locator currently matches."""

    @abstractmethod
    async def fill(self, locator: Locator, value: str) -> None:
        ...

    @abstractmethod
    async def click(self, locator: Locator) -> None:
        ...

    @abstractmethod
    async def press(self, locator: Locator, key: str) -> None:
        ...

    @abstractmethod
    async def element_state(
        self, locator: Locator, attribute: Optional[str] = None
    ) -> ElementState:
        """
        Observe the element a locator resolves to.

        Visibility, text and the requested attribute are only read when the
        locator matches exactly one element. A read that fails because the
        page changed under it gives a state that is not settled, which
        callers treat like any other unmet condition.
        """

    @abstractmethod
    async def current_url(self) -> str:
        ...

    @abstractmethod
    async def title(self) -> str:
        ...

    @abstractmethod
    async def screenshot(self) -> bytes:
        """Capture the page as PNG bytes."""

    @abstractmethod
    async def storage_state(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def start_tracing(self) -> None:
        ...

    @abstractmethod
    async def stop_tracing(self, path: Path) -> None:
        """Stop tracing and write the trace archive to ``path``."""

    @abstractmethod
    async def close(self) -> None:
        ...


class SessionProvider(ABC):
    """Creates isolated browser sessions for browser projects."""

    @abstractmethod
    async def open_session(self, project: str) -> BrowserSession:
        """
        Open a new, isolated session.

        Raises:
            SessionError: If the browser or context cannot be created
        """

    async def start(self) -> None:
        """Prepare the provider before the first session is opened."""

    @abstractmethod
    async def close(self) -> None:
        """Release every browser the provider launched."""

    async def __aenter__(self) -> "SessionProvider":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _text_argument(pattern: TextPattern) -> Union[str, Pattern]:
    """Playwright takes plain strings as substring matches and regexes as-is."""
    if pattern.regex:
        return pattern.compile()
    return pattern.value


class PlaywrightSession(BrowserSession):
    """Browser session backed by a Playwright browser context."""

    def __init__(self, project: str, context, page, logger: Optional[logging.Logger] = None):
        self.project = project
        self.context = context
        self.page = page
        self.logger = logger or logging.getLogger(__name__)
        self._closed = False

    def _build(self, locator: Locator):
        """Translate a declarative locator into a Playwright locator."""
        if locator.parent is not None:
            scope = self._build(locator.parent)
        elif locator.frame is not None:
            scope = self.page.frame_locator(locator.frame)
        else:
            scope = self.page

        if locator.role is not None:
            options: Dict[str, Any] = {}
            if locator.name is not None:
                options["name"] = _text_argument(locator.name)
            if locator.exact:
                options["exact"] = True
            target = scope.get_by_role(locator.role, **options)
        elif locator.test_id is not None:
            target = scope.get_by_test_id(locator.test_id)
        elif locator.css is not None:
            target = scope.locator(locator.css)
        elif locator.text is not None:
            target = scope.get_by_text(_text_argument(locator.text))
        else:
            target = scope.get_by_label(_text_argument(locator.label))

        if locator.nth is not None:
            target = target.nth(locator.nth)
        return target

    async def goto(self, url: str, timeout_ms: int) -> None:
        try:
            await self.page.goto(url, timeout=timeout_ms)
        except PlaywrightError as e:
            raise SessionError(
                f"Navigation to {url} failed: {e.message}",
                project=self.project,
                operation="goto",
            ) from e

    async def count(self, locator: Locator) -> int:
        return await self._build(locator).count()

    async def fill(self, locator: Locator, value: str) -> None:
        await self._build(locator).fill(value)

    async def click(self, locator: Locator) -> None:
        await self._build(locator).click()

    async def press(self, locator: Locator, key: str) -> None:
        await self._build(locator).press(key)

    async def element_state(
        self, locator: Locator, attribute: Optional[str] = None
    ) -> ElementState:
        target = self._build(locator)
        count = await target.count()
        if count != 1:
            return ElementState(count=count)

        try:
            return ElementState(
                count=count,
                visible=await target.is_visible(),
                text=await target.text_content(timeout=STATE_READ_TIMEOUT_MS),
                attribute=(
                    await target.get_attribute(attribute, timeout=STATE_READ_TIMEOUT_MS)
                    if attribute
                    else None
                ),
            )
        except PlaywrightError as e:
            self.logger.debug(f"Reading {locator.describe()} failed, will retry: {e.message}")
            return ElementState(count=count, settled=False)

    async def current_url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        return await self.page.title()

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=True)

    async def storage_state(self) -> Dict[str, Any]:
        return await self.context.storage_state()

    async def start_tracing(self) -> None:
        await self.context.tracing.start(screenshots=True, snapshots=True, sources=False)

    async def stop_tracing(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        await self.context.tracing.stop(path=str(path))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.context.close()


class PlaywrightSessionProvider(SessionProvider):
    """
    Launches browsers with Playwright and hands out isolated sessions.

    One browser is launched lazily per project and shared; every session gets
    its own browser context configured with the project's device descriptor
    and the run's default timeouts.
    """

    def __init__(self, config: RunConfiguration, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

        self._playwright_manager = None
        self._playwright = None
        self._browsers: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        if self._playwright is not None:
            return
        try:
            self._playwright_manager = async_playwright()
            self._playwright = await self._playwright_manager.start()
        except PlaywrightError as e:
            raise SessionError(f"Failed to start Playwright: {e.message}", operation="start") from e

    async def _get_browser(self, project: str):
        async with self._lock:
            if project in self._browsers:
                return self._browsers[project]

            engine, _ = KNOWN_PROJECTS[project]
            browser_type = getattr(self._playwright, engine)
            browser = await browser_type.launch(headless=self.config.headless)
            self._browsers[project] = browser

            self.logger.info(
                f"Launched {engine} browser for project {project}",
                extra={"metadata": {"project": project, "headless": self.config.headless}},
            )
            return browser

    async def open_session(self, project: str) -> BrowserSession:
        if project not in KNOWN_PROJECTS:
            raise SessionError(f"Unknown browser project: {project}", project=project, operation="open")
        await self.start()

        _, device = KNOWN_PROJECTS[project]
        context = None
        try:
            browser = await self._get_browser(project)
            descriptor = dict(self._playwright.devices[device])
            descriptor.pop("default_browser_type", None)
            context = await browser.new_context(base_url=self.config.base_url, **descriptor)
            context.set_default_timeout(self.config.action_timeout_ms)
            context.set_default_navigation_timeout(self.config.navigation_timeout_ms)
            page = await context.new_page()
        except PlaywrightError as e:
            if context is not None:
                await self._discard_context(context)
            raise SessionError(
                f"Failed to open browser session: {e.message}",
                project=project,
                operation="open",
            ) from e

        self.logger.debug(f"Opened session for project {project}")
        return PlaywrightSession(project, context, page, self.logger)

    async def _discard_context(self, context) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            self.logger.warning(f"Failed to close browser context: {e.message}")

    async def close(self) -> None:
        async with self._lock:
            browsers = list(self._browsers.values())
            self._browsers.clear()

        for browser in browsers:
            try:
                await browser.close()
            except PlaywrightError as e:
                self.logger.warning(f"Failed to close browser: {e.message}")

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            self._playwright_manager = None
