"""
Configuration management for the E2E harness.

Resolves the run configuration from environment variables with fallback
defaults. The resolved configuration is immutable and shared by every
component of a run.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Environment variables
ENV_BASE_URL = "REACT_APP_FRONTEND_URL"
ENV_PORT = "REACT_APP_PORT"
ENV_CI = "CI"
ENV_NAVIGATION_TIMEOUT = "E2E_NAVIGATION_TIMEOUT_MS"
ENV_ACTION_TIMEOUT = "E2E_ACTION_TIMEOUT_MS"
ENV_EXPECT_TIMEOUT = "E2E_EXPECT_TIMEOUT_MS"
ENV_TEST_TIMEOUT = "E2E_TEST_TIMEOUT_MS"
ENV_RETRIES = "E2E_RETRIES"
ENV_WORKERS = "E2E_WORKERS"
ENV_PROJECTS = "E2E_PROJECTS"
ENV_HEADED = "E2E_HEADED"
ENV_LOG_LEVEL = "E2E_LOG_LEVEL"
ENV_ARTIFACTS_DIR = "E2E_ARTIFACTS_DIR"
ENV_REPORTS_DIR = "E2E_REPORTS_DIR"

DEFAULT_PORT = "3000"
DEFAULT_NAVIGATION_TIMEOUT_MS = 15_000
DEFAULT_ACTION_TIMEOUT_MS = 10_000
DEFAULT_EXPECT_TIMEOUT_MS = 5_000
DEFAULT_TEST_TIMEOUT_MS = 30_000
DEFAULT_WORKERS = 4

# Project name -> (browser engine, device descriptor)
KNOWN_PROJECTS: Dict[str, tuple] = {
    "chromium": ("chromium", "Desktop Chrome"),
    "firefox": ("firefox", "Desktop Firefox"),
    "webkit": ("webkit", "Desktop Safari"),
}

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]
VALID_SCREENSHOT_MODES = ["off", "on", "only-on-failure"]
VALID_TRACE_MODES = ["off", "on", "on-first-retry"]

_http_url_adapter = TypeAdapter(AnyHttpUrl)


@dataclass(frozen=True)
class RunConfiguration:
    """Immutable configuration for one harness run."""

    base_url: str = f"http://localhost:{DEFAULT_PORT}"

    # Timeouts (milliseconds)
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    action_timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS
    expect_timeout_ms: int = DEFAULT_EXPECT_TIMEOUT_MS
    test_timeout_ms: int = DEFAULT_TEST_TIMEOUT_MS

    # Scheduling
    retries: int = 0
    workers: int = DEFAULT_WORKERS
    browser_projects: FrozenSet[str] = field(
        default_factory=lambda: frozenset({"chromium"})
    )

    # Environment detection
    ci_mode: bool = False
    headless: bool = True
    forbid_only: bool = False

    # Artifact collection
    screenshot_mode: str = "only-on-failure"
    trace_mode: str = "on-first-retry"
    artifact_retention_days: int = 7

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "text"

    # Directory paths
    suites_dir: Path = field(default_factory=lambda: Path("e2e"))
    artifacts_dir: Path = field(default_factory=lambda: Path("artifacts"))
    reports_dir: Path = field(default_factory=lambda: Path("reports"))
    logs_dir: Path = field(default_factory=lambda: Path("logs"))

    def __post_init__(self):
        """Validate invariants of the resolved configuration."""
        if not is_valid_url(self.base_url):
            raise ConfigurationError(
                f"Base URL must be an absolute http(s) URL: {self.base_url!r}",
                setting="base_url",
                value=self.base_url,
            )

        for name in (
            "navigation_timeout_ms",
            "action_timeout_ms",
            "expect_timeout_ms",
            "test_timeout_ms",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"{name} must be positive", setting=name, value=str(getattr(self, name))
                )

        if self.retries < 0:
            raise ConfigurationError(
                "retries cannot be negative", setting="retries", value=str(self.retries)
            )
        if self.workers < 1:
            raise ConfigurationError(
                "workers must be at least 1", setting="workers", value=str(self.workers)
            )

        if not self.browser_projects:
            raise ConfigurationError("At least one browser project is required")
        unknown = sorted(set(self.browser_projects) - set(KNOWN_PROJECTS))
        if unknown:
            raise ConfigurationError(
                f"Unknown browser projects: {unknown}. Must be one of {sorted(KNOWN_PROJECTS)}",
                setting="browser_projects",
                value=",".join(unknown),
            )

        if self.screenshot_mode not in VALID_SCREENSHOT_MODES:
            raise ConfigurationError(
                f"Screenshot mode must be one of: {VALID_SCREENSHOT_MODES}",
                setting="screenshot_mode",
                value=self.screenshot_mode,
            )
        if self.trace_mode not in VALID_TRACE_MODES:
            raise ConfigurationError(
                f"Trace mode must be one of: {VALID_TRACE_MODES}",
                setting="trace_mode",
                value=self.trace_mode,
            )

    @property
    def is_ci_mode(self) -> bool:
        """Check if running in CI environment."""
        return self.ci_mode

    @property
    def projects(self) -> list:
        """Browser projects in a stable order."""
        return sorted(self.browser_projects)

    def get_log_file_path(self) -> Path:
        """Get the main log file path."""
        return self.logs_dir / "e2e-harness.log"

    def with_overrides(self, **overrides: Any) -> "RunConfiguration":
        """Return a copy with the given fields replaced. ``None`` values are ignored."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        return {
            "base_url": self.base_url,
            "navigation_timeout_ms": self.navigation_timeout_ms,
            "action_timeout_ms": self.action_timeout_ms,
            "expect_timeout_ms": self.expect_timeout_ms,
            "test_timeout_ms": self.test_timeout_ms,
            "retries": self.retries,
            "workers": self.workers,
            "browser_projects": self.projects,
            "ci_mode": self.ci_mode,
            "headless": self.headless,
            "forbid_only": self.forbid_only,
            "screenshot_mode": self.screenshot_mode,
            "trace_mode": self.trace_mode,
            "artifact_retention_days": self.artifact_retention_days,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "suites_dir": str(self.suites_dir),
            "artifacts_dir": str(self.artifacts_dir),
            "reports_dir": str(self.reports_dir),
            "logs_dir": str(self.logs_dir),
        }

    @classmethod
    def from_env(cls) -> "RunConfiguration":
        """Create configuration from the process environment."""
        return resolve(os.environ)


def resolve(env: Mapping[str, str]) -> RunConfiguration:
    """
    Resolve the run configuration from environment input.

    Args:
        env: Mapping of environment variable names to values

    Returns:
        Immutable run configuration

    Raises:
        ConfigurationError: If an explicit base URL override is not a valid URL
    """
    ci = is_ci_environment(env)

    base_url = _resolve_base_url(env)

    log_level = env.get(ENV_LOG_LEVEL, "").strip().upper()
    if log_level == "WARN":
        log_level = "WARNING"
    if log_level not in VALID_LOG_LEVELS:
        log_level = "INFO"

    options: Dict[str, Any] = {
        "base_url": base_url,
        "navigation_timeout_ms": _int_override(
            env, ENV_NAVIGATION_TIMEOUT, DEFAULT_NAVIGATION_TIMEOUT_MS, minimum=1
        ),
        "action_timeout_ms": _int_override(
            env, ENV_ACTION_TIMEOUT, DEFAULT_ACTION_TIMEOUT_MS, minimum=1
        ),
        "expect_timeout_ms": _int_override(
            env, ENV_EXPECT_TIMEOUT, DEFAULT_EXPECT_TIMEOUT_MS, minimum=1
        ),
        "test_timeout_ms": _int_override(
            env, ENV_TEST_TIMEOUT, DEFAULT_TEST_TIMEOUT_MS, minimum=1
        ),
        "retries": _int_override(env, ENV_RETRIES, 1 if ci else 0, minimum=0),
        "workers": _int_override(env, ENV_WORKERS, DEFAULT_WORKERS, minimum=1),
        "browser_projects": _resolve_projects(env),
        "ci_mode": ci,
        "headless": env.get(ENV_HEADED, "").strip().lower() != "true",
        "forbid_only": ci,
        "artifact_retention_days": 30 if ci else 7,
        "log_level": log_level,
        "log_format": "json" if ci else "text",
    }

    artifacts_dir = env.get(ENV_ARTIFACTS_DIR, "").strip()
    if artifacts_dir:
        options["artifacts_dir"] = Path(artifacts_dir)
    reports_dir = env.get(ENV_REPORTS_DIR, "").strip()
    if reports_dir:
        options["reports_dir"] = Path(reports_dir)

    return RunConfiguration(**options)


def is_ci_environment(env: Mapping[str, str]) -> bool:
    """Check whether the environment describes a CI run."""
    value = env.get(ENV_CI, "").strip().lower()
    return value not in ("", "0", "false", "no")


def _resolve_base_url(env: Mapping[str, str]) -> str:
    """Pick the explicit base URL override or build one from the port."""
    override = env.get(ENV_BASE_URL, "").strip()
    if override:
        if not is_valid_url(override):
            raise ConfigurationError(
                f"{ENV_BASE_URL} is not a valid absolute URL: {override!r}",
                setting=ENV_BASE_URL,
                value=override,
            )
        return override

    port = env.get(ENV_PORT, "").strip()
    if not port.isdigit() or not 0 < int(port) < 65536:
        if port:
            logger.warning(f"Ignoring non-numeric {ENV_PORT}={port!r}")
        port = DEFAULT_PORT
    return f"http://localhost:{port}"


def _resolve_projects(env: Mapping[str, str]) -> FrozenSet[str]:
    """Parse the comma-separated project list, keeping only known projects."""
    raw = env.get(ENV_PROJECTS, "")
    names = {name.strip().lower() for name in raw.split(",") if name.strip()}
    unknown = names - set(KNOWN_PROJECTS)
    if unknown:
        logger.warning(f"Ignoring unknown browser projects: {sorted(unknown)}")
    known = names & set(KNOWN_PROJECTS)
    return frozenset(known) if known else frozenset({"chromium"})


def _int_override(
    env: Mapping[str, str], name: str, default: int, minimum: int
) -> int:
    """Read an integer override, falling back to the default when malformed."""
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning(f"Invalid {name} value {raw!r}, using default {default}")
        return default
    if value < minimum:
        logger.warning(f"{name}={value} is below {minimum}, using default {default}")
        return default
    return value


def is_valid_url(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        _http_url_adapter.validate_python(value)
    except PydanticValidationError:
        return False
    return True
