"""Tests for outcome aggregation and the run summary."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from mirrorcrypt.errors import DirectoryAccessError
from mirrorcrypt.report import FailureReason, Outcome, OutcomeKind, RunReport


def test_summary_counts_each_kind(tmp_path: Path):
    report = RunReport(tmp_path)
    report.record(Outcome.encrypted("a.txt", tmp_path / "a.txt.enc"))
    report.record(Outcome.skipped("b.txt", tmp_path / "b.txt.enc"))
    report.record(Outcome.failed("c.txt", FailureReason.WRITE_ERROR, "disk full"))
    summary = report.summary()
    assert (summary.encrypted, summary.skipped, summary.failed, summary.total) == (1, 1, 1, 3)
    assert summary.failures[0].relative_path == "c.txt"
    assert summary.exit_code == 6
    assert report.count(OutcomeKind.SKIPPED) == 1


def test_clean_run_exits_zero(tmp_path: Path):
    report = RunReport(tmp_path)
    report.record(Outcome.encrypted("a.txt", tmp_path / "a.txt.enc"))
    assert report.summary().exit_code == 0


def test_directory_errors_alone_fail_the_run(tmp_path: Path):
    report = RunReport(tmp_path)
    report.record_directory_error(DirectoryAccessError(tmp_path / "locked", "Permission denied"))
    summary = report.summary()
    assert summary.total == 0
    assert summary.exit_code == 6


def test_outcome_cannot_be_recorded_twice(tmp_path: Path):
    report = RunReport(tmp_path)
    report.record(Outcome.encrypted("a.txt", tmp_path / "a.txt.enc"))
    with pytest.raises(ValueError):
        report.record(Outcome.skipped("a.txt", tmp_path / "a.txt.enc"))


def test_concurrent_recording_keeps_every_outcome(tmp_path: Path):
    report = RunReport(tmp_path)

    def record_range(start: int):
        for i in range(start, start + 250):
            report.record(Outcome.encrypted(f"f{i}", tmp_path / f"f{i}.enc"))

    threads = [threading.Thread(target=record_range, args=(n * 250,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert report.summary().encrypted == 2000


def test_formatted_summary_lists_failures(tmp_path: Path):
    report = RunReport(tmp_path)
    report.record(Outcome.encrypted("a.txt", tmp_path / "a.txt.enc", checksum="ab" * 32))
    report.record(Outcome.failed("sub/c.txt", FailureReason.PERMISSION_ERROR, "denied"))
    report.record_directory_error(DirectoryAccessError(tmp_path / "locked", "Permission denied"))
    text = report.summary(duration=1.5).format()
    assert "sub/c.txt | Reason: permission-error" in text
    assert "UNREADABLE DIRECTORY" in text
    assert "SHA256: abababababab" in text
    assert "Encrypted: 1 | Skipped: 0 | Failed: 1" in text
    assert str(tmp_path) in text
    assert "1.50 seconds" in text
