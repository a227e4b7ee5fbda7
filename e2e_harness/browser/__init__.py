"""Browser session management."""

from .session import (
    BrowserSession,
    ElementState,
    PlaywrightSession,
    PlaywrightSessionProvider,
    SessionProvider,
)

__all__ = [
    "BrowserSession",
    "ElementState",
    "PlaywrightSession",
    "PlaywrightSessionProvider",
    "SessionProvider",
]
