"""
Artifact storage and cleanup.

Stores screenshots and traces under a directory per run, project, test and
attempt, so that concurrent tests and retries never write to the same place:

    artifacts/<run_id>/<project>/<test-slug>/attempt-<n>/<file>

Expired run directories are removed according to the retention policy.
"""

import hashlib
import re
import shutil
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

from ..core.exceptions import ArtifactCaptureError
from ..core.logging_config import get_logger, log_performance
from .models import ArtifactKind, ArtifactRef

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def slugify(value: str) -> str:
    """Make a string safe to use as a single path component."""
    slug = _UNSAFE_CHARS.sub("-", value).strip("-.")
    return slug or "unnamed"


def calculate_checksum(file_path: Union[str, Path]) -> str:
    """Calculate SHA-256 checksum of a file."""
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


class ArtifactStore:
    """
    Per-run artifact storage.

    Every test attempt gets its own directory; the store only ever creates
    files inside it, and reports each stored file as an ``ArtifactRef``.
    """

    def __init__(self, root: Union[str, Path], run_id: str):
        """
        Initialize the artifact store.

        Args:
            root: Artifacts root directory shared by all runs
            run_id: Identifier of the current run
        """
        self.root = Path(root)
        self.run_id = run_id
        self.run_dir = self.root / run_id
        self.logger = get_logger(__name__, run_id=run_id)

    def attempt_dir(self, project: str, test_id: str, attempt: int) -> Path:
        """Directory holding the artifacts of one test attempt, created on demand."""
        path = self.run_dir / slugify(project) / slugify(test_id) / f"attempt-{attempt}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save_bytes(
        self,
        project: str,
        test_id: str,
        attempt: int,
        name: str,
        data: bytes,
        kind: ArtifactKind,
        label: Optional[str] = None,
    ) -> ArtifactRef:
        """
        Write an artifact produced in memory.

        Raises:
            ArtifactCaptureError: If the file cannot be written
        """
        try:
            path = self.attempt_dir(project, test_id, attempt) / slugify(name)
            path.write_bytes(data)
        except OSError as e:
            raise ArtifactCaptureError(f"Failed to store artifact {name}: {e}", name) from e

        return self.register_file(path, kind, label)

    def register_file(
        self, path: Union[str, Path], kind: ArtifactKind, label: Optional[str] = None
    ) -> ArtifactRef:
        """
        Describe a file that was written by someone else (e.g. a trace).

        Raises:
            ArtifactCaptureError: If the file is missing or unreadable
        """
        path = Path(path)
        try:
            size = path.stat().st_size
            checksum = calculate_checksum(path)
        except OSError as e:
            raise ArtifactCaptureError(f"Artifact file is not readable: {path}: {e}", path.name) from e

        ref = ArtifactRef(
            name=path.name,
            kind=kind,
            path=str(path),
            size=size,
            checksum=checksum,
            label=label,
        )

        self.logger.debug(
            f"Stored artifact: {path.name}",
            extra={"metadata": {"kind": kind.value, "path": str(path), "size": size}},
        )
        return ref

    def list_runs(self) -> List[Path]:
        """Run directories under the artifacts root, oldest first."""
        if not self.root.exists():
            return []
        return sorted(p for p in self.root.iterdir() if p.is_dir())

    def cleanup_expired_runs(self, retention_days: int, dry_run: bool = False) -> List[Path]:
        """
        Remove run directories older than the retention period.

        The current run is never removed.

        Args:
            retention_days: Age in days after which a run directory expires
            dry_run: If True, only report what would be deleted

        Returns:
            Run directories that were (or would be) removed
        """
        start_time = time.time()
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        removed: List[Path] = []

        for run_dir in self.list_runs():
            if run_dir == self.run_dir:
                continue
            modified = datetime.fromtimestamp(run_dir.stat().st_mtime, tz=timezone.utc)
            if modified >= cutoff:
                continue

            if dry_run:
                self.logger.info(f"Would delete expired artifacts: {run_dir}")
            else:
                try:
                    shutil.rmtree(run_dir)
                except OSError as e:
                    self.logger.error(f"Failed to delete {run_dir}: {e}")
                    continue
                self.logger.debug(f"Deleted expired artifacts: {run_dir}")
            removed.append(run_dir)

        log_performance(
            self.logger,
            "artifact_cleanup",
            time.time() - start_time,
            removed_count=len(removed),
            retention_days=retention_days,
            dry_run=dry_run,
        )
        return removed
