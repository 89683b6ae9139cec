# mirrorcrypt/walker.py
import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Set

from .errors import DirectoryAccessError

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[DirectoryAccessError], None]


def _key(path) -> str:
    return os.path.normcase(os.path.abspath(path))


def _scan(directory: Path, excluded: Set[str], on_error: Optional[ErrorHandler]) -> Iterator[Path]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        error = DirectoryAccessError(directory, e.strerror or str(e))
        if on_error is None:
            raise error from e
        logger.warning("%s", error)
        on_error(error)
        return

    for entry in entries:
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
            is_file = not is_dir and entry.is_file(follow_symlinks=False)
        except OSError as e:
            error = DirectoryAccessError(entry.path, e.strerror or str(e))
            if on_error is None:
                raise error from e
            logger.warning("%s", error)
            on_error(error)
            continue
        if is_dir:
            if _key(entry.path) in excluded:
                logger.info("Not descending into '%s' (it is the destination tree).", entry.path)
                continue
            yield from _scan(Path(entry.path), excluded, on_error)
        elif is_file:
            yield Path(entry.path)
        else:
            logger.debug("Ignoring non-regular entry '%s'.", entry.path)


def walk_source_tree(source_root: Path, exclude: Iterable[Path] = (),
                     on_error: Optional[ErrorHandler] = None) -> Iterator[Path]:
    """Lazily yields every regular file under `source_root`, depth-first.

    Symlinks (to files or directories), devices, sockets and FIFOs are not
    yielded, and symlinked directories are not followed. Siblings are visited
    in name order. Directories listed in `exclude` are pruned.

    An unreadable directory is passed to `on_error` and the walk continues
    with its siblings; without a handler the DirectoryAccessError is raised.
    """
    excluded = {_key(path) for path in exclude}
    yield from _scan(Path(source_root), excluded, on_error)
