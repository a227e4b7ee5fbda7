"""
Unit tests for artifact storage.

Tests per-attempt directory layout, checksums and retention cleanup.
"""

import hashlib
import os
import time

import pytest

from e2e_harness.core.exceptions import ArtifactCaptureError
from e2e_harness.execution.artifacts import ArtifactStore, slugify
from e2e_harness.execution.models import ArtifactKind


class TestArtifactStore:
    """Test cases for ArtifactStore."""

    def test_save_bytes_layout_and_checksum(self, tmp_path):
        store = ArtifactStore(tmp_path, "run-1")

        ref = store.save_bytes(
            "chromium", "THEME-002", 0, "THEME-002_after-toggle.png", b"png-data",
            ArtifactKind.SCREENSHOT, label="after-toggle",
        )

        expected = tmp_path / "run-1" / "chromium" / "THEME-002" / "attempt-0" / "THEME-002_after-toggle.png"
        assert ref.path == str(expected)
        assert expected.read_bytes() == b"png-data"
        assert ref.size == len(b"png-data")
        assert ref.checksum == hashlib.sha256(b"png-data").hexdigest()
        assert ref.kind == ArtifactKind.SCREENSHOT
        assert ref.label == "after-toggle"

    def test_attempts_do_not_share_directories(self, tmp_path):
        store = ArtifactStore(tmp_path, "run-1")

        assert store.attempt_dir("chromium", "T", 0) != store.attempt_dir("chromium", "T", 1)
        assert store.attempt_dir("chromium", "T", 0) != store.attempt_dir("firefox", "T", 0)

    def test_register_missing_file(self, tmp_path):
        store = ArtifactStore(tmp_path, "run-1")

        with pytest.raises(ArtifactCaptureError):
            store.register_file(tmp_path / "missing.zip", ArtifactKind.TRACE)

    def test_cleanup_expired_runs(self, tmp_path):
        old_run = tmp_path / "20200101-000000-aaaaaaaa"
        recent_run = tmp_path / "20990101-000000-bbbbbbbb"
        old_run.mkdir()
        recent_run.mkdir()
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_run, (ten_days_ago, ten_days_ago))

        store = ArtifactStore(tmp_path, "current")
        store.attempt_dir("chromium", "T", 0)
        os.utime(store.run_dir, (ten_days_ago, ten_days_ago))

        removed = store.cleanup_expired_runs(retention_days=7)

        assert removed == [old_run]
        assert not old_run.exists()
        assert recent_run.exists()
        assert store.run_dir.exists()

    def test_cleanup_dry_run_keeps_files(self, tmp_path):
        old_run = tmp_path / "old"
        old_run.mkdir()
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_run, (ten_days_ago, ten_days_ago))

        removed = ArtifactStore(tmp_path, "current").cleanup_expired_runs(7, dry_run=True)

        assert removed == [old_run]
        assert old_run.exists()


@pytest.mark.parametrize(
    "value, expected",
    [
        ("TC-TEST2-001", "TC-TEST2-001"),
        ("Theme › toggle", "Theme-toggle"),
        ("../etc/passwd", "etc-passwd"),
        ("///", "unnamed"),
    ],
)
def test_slugify(value, expected):
    assert slugify(value) == expected
