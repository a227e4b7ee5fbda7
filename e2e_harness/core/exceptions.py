"""
Base exception classes for the E2E harness.

Provides a hierarchy of exceptions for the error categories that can occur
while resolving configuration, driving browser sessions and reporting results.
"""

from typing import Optional, Dict, Any


class HarnessError(Exception):
    """Base exception class for all harness errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class ConfigurationError(HarnessError):
    """Raised when the run configuration is invalid. Aborts the whole run."""

    def __init__(
        self,
        message: str,
        setting: Optional[str] = None,
        value: Optional[str] = None,
    ):
        super().__init__(message, "CONFIGURATION_INVALID")
        self.setting = setting
        self.value = value
        self.context.update(
            {
                "setting": setting,
                "value": value,
            }
        )


class SuiteDefinitionError(ConfigurationError):
    """Raised when a suite file cannot be loaded or declares invalid tests."""

    def __init__(self, message: str, suite_file: Optional[str] = None):
        super().__init__(message, setting="suite_file", value=suite_file)
        self.error_code = "SUITE_DEFINITION_INVALID"
        self.suite_file = suite_file


class StepError(HarnessError):
    """Base class for errors that fail a single step of a test case."""

    def __init__(
        self,
        message: str,
        error_code: str,
        locator: Optional[str] = None,
    ):
        super().__init__(message, error_code)
        self.locator = locator
        self.context.update({"locator": locator})


class LocatorResolutionError(StepError):
    """Raised when a locator does not resolve to exactly one element."""

    def __init__(self, message: str, locator: Optional[str] = None, match_count: int = 0):
        super().__init__(message, "LOCATOR_RESOLUTION_FAILED", locator)
        self.match_count = match_count
        self.context.update({"match_count": match_count})


class AssertionTimeout(StepError):
    """Raised when an expected condition is not met within its time budget."""

    def __init__(
        self,
        message: str,
        locator: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        received: Optional[Any] = None,
    ):
        super().__init__(message, "ASSERTION_TIMEOUT", locator)
        self.timeout_ms = timeout_ms
        self.received = received
        self.context.update(
            {
                "timeout_ms": timeout_ms,
                "received": received,
            }
        )


class SessionError(HarnessError):
    """Raised when a browser session cannot be created or navigated."""

    def __init__(
        self,
        message: str,
        project: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, "SESSION_FAILED")
        self.project = project
        self.operation = operation
        self.context.update(
            {
                "project": project,
                "operation": operation,
            }
        )


class ArtifactCaptureError(HarnessError):
    """Raised when an artifact cannot be captured or stored. Never fatal."""

    def __init__(self, message: str, artifact_name: Optional[str] = None):
        super().__init__(message, "ARTIFACT_CAPTURE_FAILED")
        self.artifact_name = artifact_name
        self.context.update({"artifact_name": artifact_name})


class ReportingError(HarnessError):
    """Raised when results cannot be recorded into the run report."""

    def __init__(self, message: str, test_id: Optional[str] = None):
        super().__init__(message, "REPORTING_FAILED")
        self.test_id = test_id
        self.context.update({"test_id": test_id})
