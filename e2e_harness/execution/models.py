"""
Data models for test execution and artifact management.

Defines Pydantic models for test results, the attempts that led to them,
and the artifacts collected along the way.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class TestStatus(Enum):
    """Outcome of one test attempt."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timedOut"

    @property
    def is_failure(self) -> bool:
        return self in (TestStatus.FAILED, TestStatus.TIMED_OUT)


class ArtifactKind(Enum):
    """Types of test artifacts."""

    SCREENSHOT = "screenshot"
    TRACE = "trace"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactRef(BaseModel):
    """Reference to an artifact file stored for one test attempt."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="File name of the artifact")
    kind: ArtifactKind = Field(..., description="Type of artifact")
    path: str = Field(..., description="Path to the artifact file")
    size: int = Field(..., ge=0, description="File size in bytes")
    checksum: str = Field(..., description="SHA-256 of the file contents")
    label: Optional[str] = Field(None, description="Label given by the step that captured it")
    created_at: datetime = Field(default_factory=_utcnow)


class AttemptRecord(BaseModel):
    """Summary of an attempt that was superseded by a retry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    retry: int = Field(..., ge=0)
    status: TestStatus
    duration_ms: int = Field(..., ge=0)
    failure_message: Optional[str] = None
    error_type: Optional[str] = None
    artifacts: Tuple[ArtifactRef, ...] = Field(default_factory=tuple)


class TestResult(BaseModel):
    """Result of running one test case on one browser project."""

    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    test_id: str = Field(..., description="Identifier of the test case")
    title: str = Field(..., description="Full title of the test case")
    project: str = Field(..., description="Browser project the test ran on")

    status: TestStatus
    duration_ms: int = Field(..., ge=0, description="Duration of the reported attempt")
    failure_message: Optional[str] = Field(None, description="Why the test did not pass")
    error_type: Optional[str] = Field(None, description="Exception type behind the failure")

    artifacts: Tuple[ArtifactRef, ...] = Field(
        default_factory=tuple, description="Artifacts in capture order"
    )
    steps_completed: int = Field(0, ge=0, description="Steps that finished successfully")

    retry: int = Field(0, ge=0, description="Index of the reported attempt")
    previous_attempts: Tuple[AttemptRecord, ...] = Field(default_factory=tuple)

    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_flaky(self) -> bool:
        """Passed, but only after at least one failed attempt."""
        return self.status == TestStatus.PASSED and self.retry > 0

    @property
    def qualified_id(self) -> str:
        return f"{self.project}:{self.test_id}"

    def to_attempt_record(self) -> AttemptRecord:
        return AttemptRecord(
            retry=self.retry,
            status=self.status,
            duration_ms=self.duration_ms,
            failure_message=self.failure_message,
            error_type=self.error_type,
            artifacts=self.artifacts,
        )

    def get_artifacts_by_kind(self, kind: ArtifactKind) -> List[ArtifactRef]:
        return [a for a in self.artifacts if a.kind == kind]

    def to_summary(self) -> dict:
        """Create a summary dictionary for logging."""
        return {
            "test_id": self.test_id,
            "project": self.project,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "retry": self.retry,
            "steps_completed": self.steps_completed,
            "artifacts_count": len(self.artifacts),
        }
