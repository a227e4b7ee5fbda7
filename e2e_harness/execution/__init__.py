"""
Test execution: running test cases, retries and artifact collection.

The suite runner lives in ``e2e_harness.execution.runner``; it depends on
the reporting package, which itself depends on the models defined here.
"""

from .artifacts import ArtifactStore
from .executor import TestCaseExecutor
from .models import ArtifactKind, ArtifactRef, AttemptRecord, TestResult, TestStatus
from .polling import PollOutcome, poll
from .retry import RetryPolicy

__all__ = [
    "ArtifactStore",
    "TestCaseExecutor",
    "ArtifactKind",
    "ArtifactRef",
    "AttemptRecord",
    "TestResult",
    "TestStatus",
    "PollOutcome",
    "poll",
    "RetryPolicy",
]
