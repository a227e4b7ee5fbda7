"""
Web E2E Harness - declarative browser end-to-end tests

Runs YAML test suites against a web application through Playwright, with
retries, artifact collection and JUnit/JSON reporting.
"""

__version__ = "0.1.0"

from .core.config import RunConfiguration, resolve
from .core.exceptions import HarnessError
from .core.logging_config import setup_logging

__all__ = [
    "RunConfiguration",
    "resolve",
    "HarnessError",
    "setup_logging",
]
