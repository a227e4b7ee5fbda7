"""Declarative test suites: models and file loading."""

from .loader import load_suite_file, load_test_cases, parse_suite
from .models import (
    Locator,
    Step,
    STEP_ACTIONS,
    SuiteDefinition,
    TestCase,
    TextPattern,
)

__all__ = [
    "Locator",
    "Step",
    "STEP_ACTIONS",
    "SuiteDefinition",
    "TestCase",
    "TextPattern",
    "load_suite_file",
    "load_test_cases",
    "parse_suite",
]
