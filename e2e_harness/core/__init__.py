"""Core components for the E2E harness."""

from .config import RunConfiguration, resolve
from .exceptions import (
    HarnessError,
    ConfigurationError,
    SuiteDefinitionError,
    StepError,
    LocatorResolutionError,
    AssertionTimeout,
    SessionError,
    ArtifactCaptureError,
    ReportingError,
)
from .logging_config import setup_logging, get_logger
from .run_context import RunContext, generate_run_id

__all__ = [
    "RunConfiguration",
    "resolve",
    "HarnessError",
    "ConfigurationError",
    "SuiteDefinitionError",
    "StepError",
    "LocatorResolutionError",
    "AssertionTimeout",
    "SessionError",
    "ArtifactCaptureError",
    "ReportingError",
    "setup_logging",
    "get_logger",
    "RunContext",
    "generate_run_id",
]
