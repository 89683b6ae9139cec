# mirrorcrypt/report.py
"""Per-file outcomes and the run summary."""
import enum
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import DirectoryAccessError, EXIT_FILE_FAILURES, EXIT_OK
from .utils import format_duration


class OutcomeKind(enum.Enum):
    ENCRYPTED = 'encrypted'
    SKIPPED = 'skipped'
    FAILED = 'failed'


class FailureReason(enum.Enum):
    READ_ERROR = 'read-error'
    WRITE_ERROR = 'write-error'
    CIPHER_ERROR = 'cipher-error'
    PERMISSION_ERROR = 'permission-error'
    COLLISION = 'collision'
    PATH_ERROR = 'path-error'
    INTERNAL_ERROR = 'internal-error'


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    relative_path: str
    destination_path: Optional[Path] = None
    reason: Optional[FailureReason] = None
    message: str = ''
    checksum: Optional[str] = None

    @classmethod
    def encrypted(cls, relative_path: str, destination_path: Path, checksum: Optional[str] = None) -> 'Outcome':
        return cls(OutcomeKind.ENCRYPTED, relative_path, destination_path, checksum=checksum)

    @classmethod
    def skipped(cls, relative_path: str, destination_path: Path) -> 'Outcome':
        return cls(OutcomeKind.SKIPPED, relative_path, destination_path)

    @classmethod
    def failed(cls, relative_path: str, reason: FailureReason, message: str,
               destination_path: Optional[Path] = None) -> 'Outcome':
        return cls(OutcomeKind.FAILED, relative_path, destination_path, reason=reason, message=message)


@dataclass(frozen=True)
class RunSummary:
    destination_root: Path
    encrypted: int
    skipped: int
    failed: int
    failures: Tuple[Outcome, ...] = ()
    directory_errors: Tuple[DirectoryAccessError, ...] = ()
    checksums: Tuple[Tuple[str, str], ...] = ()
    duration: float = 0.0

    @property
    def total(self) -> int:
        return self.encrypted + self.skipped + self.failed

    @property
    def exit_code(self) -> int:
        return EXIT_FILE_FAILURES if (self.failed or self.directory_errors) else EXIT_OK

    def format(self) -> str:
        lines = ["--- Run Summary ---"]
        for rel, checksum in self.checksums:
            lines.append(f"✅ Encrypted: {rel} | SHA256: {checksum[:12]}...")
        for outcome in self.failures:
            lines.append(f"❌ FAILED: {outcome.relative_path} | Reason: {outcome.reason.value} | {outcome.message}")
        for error in self.directory_errors:
            lines.append(f"❌ UNREADABLE DIRECTORY: {error.path} | {error.reason}")
        lines.append("-" * 19)
        lines.append(f"Encrypted: {self.encrypted} | Skipped: {self.skipped} | Failed: {self.failed}")
        lines.append(f"Encrypted files stored under: {self.destination_root}")
        lines.append(f"Finished in {format_duration(self.duration)}.")
        return "\n".join(lines)


class RunReport:
    """Thread-safe accumulator of outcomes. Each relative path is recorded at most once."""

    def __init__(self, destination_root: Path):
        self.destination_root = Path(destination_root)
        self._lock = threading.Lock()
        self._outcomes: Dict[str, Outcome] = {}
        self._directory_errors: List[DirectoryAccessError] = []

    def record(self, outcome: Outcome) -> None:
        with self._lock:
            if outcome.relative_path in self._outcomes:
                raise ValueError(f"Outcome for '{outcome.relative_path}' was already recorded.")
            self._outcomes[outcome.relative_path] = outcome

    def record_directory_error(self, error: DirectoryAccessError) -> None:
        with self._lock:
            self._directory_errors.append(error)

    def count(self, kind: OutcomeKind) -> int:
        with self._lock:
            return sum(1 for o in self._outcomes.values() if o.kind is kind)

    def summary(self, duration: float = 0.0) -> RunSummary:
        with self._lock:
            ordered = sorted(self._outcomes.values(), key=lambda o: o.relative_path)
            counts = {kind: 0 for kind in OutcomeKind}
            for outcome in ordered:
                counts[outcome.kind] += 1
            return RunSummary(
                destination_root=self.destination_root,
                encrypted=counts[OutcomeKind.ENCRYPTED],
                skipped=counts[OutcomeKind.SKIPPED],
                failed=counts[OutcomeKind.FAILED],
                failures=tuple(o for o in ordered if o.kind is OutcomeKind.FAILED),
                directory_errors=tuple(self._directory_errors),
                checksums=tuple((o.relative_path, o.checksum) for o in ordered if o.checksum),
                duration=duration,
            )
