"""
Data models for run reporting.

A RunReport is created empty when a run starts, receives one result per test
and project while tests finish in any order, and becomes read-only once
finalized.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import ReportingError
from ..execution.models import TestResult, TestStatus


class RunSummary(BaseModel):
    """Aggregate counts of a run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total: int = Field(0, ge=0)
    passed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    timed_out: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    flaky: int = Field(0, ge=0, description="Passed after at least one retry")
    duration_ms: int = Field(0, ge=0)

    @property
    def executed(self) -> int:
        return self.total - self.skipped

    @property
    def success_rate(self) -> float:
        """Percentage of executed tests that passed."""
        if self.executed == 0:
            return 100.0
        return self.passed / self.executed * 100

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.timed_out == 0

    @classmethod
    def from_results(cls, results: Sequence[TestResult], duration_ms: int = 0) -> "RunSummary":
        statuses = [r.status for r in results]
        return cls(
            total=len(results),
            passed=statuses.count(TestStatus.PASSED),
            failed=statuses.count(TestStatus.FAILED),
            timed_out=statuses.count(TestStatus.TIMED_OUT),
            skipped=statuses.count(TestStatus.SKIPPED),
            flaky=sum(1 for r in results if r.is_flaky),
            duration_ms=duration_ms,
        )


class RunReport:
    """Results of one run keyed by test (and project, when several run)."""

    def __init__(self, run_id: str, projects: Sequence[str], base_url: str = ""):
        self.run_id = run_id
        self.projects = list(projects)
        self.base_url = base_url
        self.started_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None
        self._results: Dict[str, TestResult] = {}

    @property
    def multi_project(self) -> bool:
        return len(self.projects) > 1

    @property
    def finalized(self) -> bool:
        return self.completed_at is not None

    def key_for(self, result: TestResult) -> str:
        """Report key: the test id, qualified by project when several run."""
        return result.qualified_id if self.multi_project else result.test_id

    def add(self, result: TestResult) -> str:
        """
        Record a result.

        Raises:
            ReportingError: If the report is finalized or the key is taken
        """
        key = self.key_for(result)
        if self.finalized:
            raise ReportingError(f"Report {self.run_id} is finalized", key)
        if key in self._results:
            raise ReportingError(f"Duplicate result for {key}", key)
        self._results[key] = result
        return key

    def finalize(self) -> None:
        if not self.finalized:
            self.completed_at = datetime.now(timezone.utc)

    def get(self, key: str) -> Optional[TestResult]:
        return self._results.get(key)

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, key: str) -> bool:
        return key in self._results

    @property
    def results(self) -> List[TestResult]:
        """Results ordered by report key."""
        return [self._results[key] for key in sorted(self._results)]

    @property
    def duration_ms(self) -> int:
        end = self.completed_at or datetime.now(timezone.utc)
        return int((end - self.started_at).total_seconds() * 1000)

    @property
    def summary(self) -> RunSummary:
        return RunSummary.from_results(list(self._results.values()), self.duration_ms)

    @property
    def exit_code(self) -> int:
        """0 when every executed test passed, 1 otherwise."""
        return 0 if self.summary.success else 1

    def to_dict(self) -> Dict[str, Any]:
        summary = self.summary
        return {
            "run_id": self.run_id,
            "base_url": self.base_url,
            "projects": self.projects,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": {**summary.model_dump(), "success_rate": summary.success_rate},
            "exit_code": self.exit_code,
            "results": {
                key: self._results[key].model_dump(mode="json") for key in sorted(self._results)
            },
        }
