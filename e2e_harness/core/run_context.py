"""
Run identification for the E2E harness.

Generates run IDs used to correlate logs, artifacts and reports of one run.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def generate_run_id() -> str:
    """
    Generate a unique run ID.

    Returns:
        Identifier of the form ``YYYYMMDD-HHMMSS-<8 hex chars>``, sortable by start time
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{timestamp}-{uuid.uuid4().hex[:8]}"


@dataclass
class RunContext:
    """Context information for one harness run."""

    run_id: str = field(default_factory=generate_run_id)
    start_time: float = field(default_factory=time.time)

    @property
    def duration(self) -> float:
        """Get current run duration in seconds."""
        return time.time() - self.start_time
