# mirrorcrypt/mapper.py
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Union

from .errors import DestinationCollisionError, PathEscapeError, PerFileError
from .report import FailureReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileTask:
    source_path: Path
    relative_path: str
    destination_path: Path


class PathMapper:
    """Maps files under the source root onto ciphertext paths under the destination root.

    `sub/b.txt` becomes `<destination_root>/sub/b.txt<suffix>`. The mapping is
    purely textual so it never depends on what already exists on disk.
    """

    def __init__(self, source_root: Path, destination_root: Path, suffix: str = '.enc'):
        self.source_root = Path(source_root)
        self.destination_root = Path(destination_root)
        self.suffix = suffix

    def relative_path(self, file_path: Union[str, Path]) -> PurePath:
        file_path = Path(file_path)
        try:
            relative = file_path.relative_to(self.source_root)
        except ValueError:
            relative = PurePath(file_path.name)
            logger.warning("'%s' is not under source root '%s'; using its base name only. "
                           "Directory structure is flattened for this file.", file_path, self.source_root)
        if not relative.parts or relative.is_absolute() or any(part in ('', '.', '..') for part in relative.parts):
            raise PathEscapeError(FailureReason.PATH_ERROR,
                                  f"Relative path '{relative}' would leave the destination root.", file_path)
        return relative

    def destination_for(self, file_path: Union[str, Path]) -> Path:
        relative = self.relative_path(file_path)
        destination = self.destination_root.joinpath(*relative.parts[:-1]) / f"{relative.name}{self.suffix}"
        root = os.path.abspath(self.destination_root)
        if os.path.commonpath([root, os.path.abspath(destination)]) != root:
            raise PathEscapeError(FailureReason.PATH_ERROR,
                                  f"Destination '{destination}' is outside '{self.destination_root}'.", file_path)
        return destination

    def task_for(self, file_path: Union[str, Path]) -> FileTask:
        file_path = Path(file_path)
        return FileTask(
            source_path=file_path,
            relative_path=self.relative_path(file_path).as_posix(),
            destination_path=self.destination_for(file_path),
        )

    def ensure_parent(self, destination_path: Path) -> None:
        """Creates the parent directory chain. Concurrent creation of the same chain is fine."""
        try:
            destination_path.parent.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise DestinationCollisionError(FailureReason.COLLISION,
                                            f"A file occupies a directory name on the destination path: {e}",
                                            destination_path) from e
        except PermissionError as e:
            raise PerFileError(FailureReason.PERMISSION_ERROR, f"Cannot create directory: {e}", destination_path) from e
        except OSError as e:
            raise PerFileError(FailureReason.WRITE_ERROR, f"Cannot create directory: {e}", destination_path) from e

    def map(self, file_path: Union[str, Path]) -> Path:
        destination = self.destination_for(file_path)
        self.ensure_parent(destination)
        return destination
