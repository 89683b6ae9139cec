# mirrorcrypt/errors.py
"""
Exception classes for the mirror encryption tool.

Fatal errors (usage, validation, missing backend) are raised before anything
is written. Per-file errors never leave the FileEncryptor boundary: they are
turned into a Failed outcome and the walk continues.
"""
from pathlib import Path
from typing import Optional, Union

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_USAGE = 2
EXIT_BAD_SOURCE = 3
EXIT_BAD_PASSPHRASE = 4
EXIT_NO_BACKEND = 5
EXIT_FILE_FAILURES = 6
EXIT_INTERRUPTED = 130


class MirrorCryptError(Exception):
    """Base class for exceptions in this application."""

    exit_code = EXIT_INTERNAL


class UsageError(MirrorCryptError):
    """Wrong invocation (argument count, unknown options)."""

    exit_code = EXIT_USAGE


class BackendUnavailableError(UsageError):
    """No authenticated-encryption backend is usable on this system."""

    exit_code = EXIT_NO_BACKEND


class ValidationError(MirrorCryptError):
    """Inputs rejected before any work starts."""

    exit_code = EXIT_BAD_SOURCE


class ConfigurationError(ValidationError):
    """Invalid value in config.ini."""

    pass


class PassphraseError(ValidationError):
    """Passphrase empty or not confirmed."""

    exit_code = EXIT_BAD_PASSPHRASE


class DirectoryAccessError(MirrorCryptError):
    """A directory under the source root could not be listed."""

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(f"Cannot read directory '{path}': {reason}")
        self.path = Path(path)
        self.reason = reason


class PerFileError(MirrorCryptError):
    """Failure confined to a single file. `reason` is a FailureReason."""

    def __init__(self, reason, message: str, filepath: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.reason = reason
        self.filepath = filepath

    def __str__(self):
        if self.filepath:
            return f"{super().__str__()} (File: {self.filepath})"
        return super().__str__()


class PathMappingError(PerFileError):
    """The destination path for a file could not be computed safely."""

    pass


class PathEscapeError(PathMappingError):
    """The relative path would leave the destination root."""

    pass


class DestinationCollisionError(PathMappingError):
    """Two source entries map onto the same destination name."""

    pass
