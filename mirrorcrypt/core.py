# mirrorcrypt/core.py
import logging
import os
import tempfile
import threading
import time
from multiprocessing.pool import ThreadPool
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional

import psutil
from tqdm import tqdm

from . import crypto
from .config import is_enabled
from .errors import DestinationCollisionError, PerFileError, ValidationError
from .mapper import FileTask, PathMapper
from .report import FailureReason, Outcome, OutcomeKind, RunReport, RunSummary
from .utils import Secret
from .walker import walk_source_tree

logger = logging.getLogger(__name__)


# --- Destination Bookkeeping ---
def probe_case_insensitive(directory: Path) -> bool:
    """True when `directory` lives on a filesystem that ignores name case."""
    with tempfile.NamedTemporaryFile(prefix='.MirrorCrypt-Case-', dir=directory) as probe:
        name = os.path.basename(probe.name)
        return os.path.exists(os.path.join(directory, name.lower()))


class DestinationRegistry:
    """Claims destination names for one run so no two files end up on the same path.

    File names and the directory names above them are tracked separately, so
    a file `x.enc` and a directory `x.enc/` produced by different source
    entries are detected as a collision too.
    """

    def __init__(self, destination_root: Path, case_insensitive: bool = False):
        self.destination_root = Path(destination_root)
        self.case_insensitive = case_insensitive
        self._lock = threading.Lock()
        self._files: Dict[str, str] = {}
        self._dirs: Dict[str, str] = {}

    def _fold(self, parts) -> str:
        key = '/'.join(parts)
        return key.casefold() if self.case_insensitive else key

    def claim(self, task: FileTask) -> None:
        parts = task.destination_path.relative_to(self.destination_root).parts
        file_key = self._fold(parts)
        dir_keys = [self._fold(parts[:i]) for i in range(1, len(parts))]
        with self._lock:
            owner = self._files.get(file_key) or self._dirs.get(file_key)
            if owner is None:
                owner = next((self._files[k] for k in dir_keys if k in self._files), None)
            if owner is not None:
                raise DestinationCollisionError(
                    FailureReason.COLLISION,
                    f"Destination '{task.destination_path}' collides with the output of '{owner}'.",
                    task.source_path)
            self._files[file_key] = task.relative_path
            for key in dir_keys:
                self._dirs.setdefault(key, task.relative_path)


# --- Per-File Unit of Work ---
class FileEncryptor:
    def __init__(self, mapper: PathMapper, backend: crypto.CipherBackend, config: Dict,
                 registry: DestinationRegistry, show_progress: bool = False):
        self.mapper = mapper
        self.backend = backend
        self.config = config
        self.registry = registry
        self.show_progress = show_progress
        self.show_checksums = is_enabled(config, 'show_checksums')
        self._swept = set()
        self._swept_lock = threading.Lock()

    def _sweep_once(self, directory: Path) -> None:
        with self._swept_lock:
            if directory in self._swept:
                return
            self._swept.add(directory)
        crypto.sweep_stale_partials(directory)

    def process(self, task: FileTask, secret: Secret) -> Outcome:
        """Runs one task to an Outcome. Never raises for a per-file problem."""
        try:
            self.registry.claim(task)
            if os.path.lexists(task.destination_path):
                if task.destination_path.is_dir() and not task.destination_path.is_symlink():
                    raise DestinationCollisionError(FailureReason.COLLISION,
                                                    "A directory already exists at the destination path.",
                                                    task.destination_path)
                return Outcome.skipped(task.relative_path, task.destination_path)
            self.mapper.ensure_parent(task.destination_path)
            self._sweep_once(task.destination_path.parent)
            published = crypto.encrypt_file(secret, task.source_path, task.destination_path,
                                            self.config, self.backend, show_progress=self.show_progress)
            if not published:
                return Outcome.skipped(task.relative_path, task.destination_path)
            checksum = crypto.calculate_hash(task.destination_path, self.config) if self.show_checksums else None
            return Outcome.encrypted(task.relative_path, task.destination_path, checksum)
        except PerFileError as e:
            logger.warning("Encryption of '%s' failed (%s): %s", task.relative_path, e.reason.value, e)
            return Outcome.failed(task.relative_path, e.reason, str(e), task.destination_path)
        except Exception as e:
            logger.exception("Unexpected error while encrypting '%s'", task.relative_path)
            return Outcome.failed(task.relative_path, FailureReason.INTERNAL_ERROR, str(e), task.destination_path)

    def process_path(self, file_path: Path, secret: Secret) -> Outcome:
        try:
            task = self.mapper.task_for(file_path)
        except PerFileError as e:
            logger.warning("Cannot map '%s': %s", file_path, e)
            return Outcome.failed(str(file_path), e.reason, str(e))
        return self.process(task, secret)


# --- Orchestration ---
def _print_status(outcome: Outcome, backend_name: str) -> None:
    if outcome.kind is OutcomeKind.ENCRYPTED:
        tqdm.write(f"✅ Encrypting: {outcome.relative_path} -> {outcome.destination_path} ... done ({backend_name})")
    elif outcome.kind is OutcomeKind.SKIPPED:
        tqdm.write(f"⏭️  Skipping (exists): {outcome.relative_path} -> {outcome.destination_path}")
    else:
        tqdm.write(f"❌ Encrypting: {outcome.relative_path} ... FAILED ({outcome.reason.value})")


def _until_cancelled(files: Iterable[Path], cancel: threading.Event) -> Iterator[Path]:
    for path in files:
        if cancel.is_set():
            return
        yield path


def _worker_count(config: Dict) -> int:
    total_cores = os.cpu_count() or 1
    worker_count_config = int(config.get('worker_processes', 0))
    workers = total_cores if worker_count_config == 0 else min(worker_count_config, total_cores)
    if is_enabled(config, 'debug_mode'):
        logger.debug("Worker pool enabled. System has %s logical / %s physical cores. Configured to use %s.",
                     total_cores, psutil.cpu_count(logical=False), workers)
    return workers


def _run_sequential(encryptor: FileEncryptor, files: Iterable[Path], secret: Secret, report: RunReport) -> None:
    for path in files:
        outcome = encryptor.process_path(path, secret)
        report.record(outcome)
        _print_status(outcome, encryptor.backend.name)


def _run_pool(encryptor: FileEncryptor, files: Iterable[Path], secret: Secret, report: RunReport,
              workers: int, config: Dict, show_progress: bool) -> None:
    use_ascii = config.get('progress_bar_style', 'unicode').lower() == 'ascii'
    cancel = threading.Event()

    def work(path: Path) -> Optional[Outcome]:
        if cancel.is_set():
            return None
        return encryptor.process_path(path, secret)

    pool = ThreadPool(processes=workers)
    try:
        with tqdm(desc="Encrypting files", unit='file', ascii=use_ascii, disable=not show_progress) as pbar:
            for outcome in pool.imap_unordered(work, _until_cancelled(files, cancel)):
                if outcome is None:
                    continue
                report.record(outcome)
                _print_status(outcome, encryptor.backend.name)
                pbar.set_description(f"Finished: {Path(outcome.relative_path).name}")
                pbar.update(1)
    except BaseException:
        cancel.set()
        raise
    finally:
        # In-flight files finish (publish or clean up) before the caller may clear the secret.
        pool.close()
        pool.join()


def mirror_encrypt(source_root: Path, destination_root: Path, secret: Secret, config: Dict,
                   backend: crypto.CipherBackend, show_progress: bool = True) -> RunSummary:
    """Encrypts every regular file under `source_root` into a mirrored tree under `destination_root`."""
    start_time = time.time()
    source_root, destination_root = Path(source_root), Path(destination_root)
    try:
        destination_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ValidationError(f"Cannot create destination directory '{destination_root}': {e}")

    case_mode = config.get('case_insensitive_destination', 'auto')
    if case_mode == 'auto':
        try:
            case_insensitive = probe_case_insensitive(destination_root)
        except OSError as e:
            raise ValidationError(f"Destination directory '{destination_root}' is not writable: {e}")
    else:
        case_insensitive = case_mode == 'yes'
    logger.debug("Destination name matching is case-%s.", 'insensitive' if case_insensitive else 'sensitive')

    report = RunReport(destination_root)
    mapper = PathMapper(source_root, destination_root, config.get('encrypted_file_extension', '.enc'))
    registry = DestinationRegistry(destination_root, case_insensitive)
    use_pool = is_enabled(config, 'enable_parallel')
    encryptor = FileEncryptor(mapper, backend, config, registry, show_progress=show_progress and not use_pool)

    exclude = []
    if source_root in destination_root.parents:
        logger.info("Destination lies inside the source tree; it will not be walked.")
        exclude.append(destination_root)
    files = walk_source_tree(source_root, exclude=exclude, on_error=report.record_directory_error)

    print(f"Encrypting files in '{source_root}' into '{destination_root}' ({backend.name})...")
    if use_pool:
        _run_pool(encryptor, files, secret, report, _worker_count(config), config, show_progress)
    else:
        _run_sequential(encryptor, files, secret, report)
    return report.summary(time.time() - start_time)
