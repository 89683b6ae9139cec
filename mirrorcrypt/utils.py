# mirrorcrypt/utils.py
import getpass
import os
import sys
from pathlib import Path
from typing import Dict, Optional, TextIO, Union

from zxcvbn import zxcvbn

from .config import is_enabled
from .errors import PassphraseError, ValidationError

# --- Secret Handling ---
class Secret:
    """Passphrase bytes owned for the duration of one run.

    The buffer is a mutable bytearray so it can be zeroed in place. Use it as a
    context manager to guarantee `clear()` on every exit path.
    """

    def __init__(self, value: Union[str, bytes, bytearray]):
        if isinstance(value, str):
            value = value.encode('utf-8')
        self._buffer = bytearray(value)
        self._cleared = False

    @property
    def cleared(self) -> bool:
        return self._cleared

    def __len__(self) -> int:
        return len(self._buffer)

    def buffer(self) -> bytearray:
        if self._cleared:
            raise ValueError("Secret has already been cleared.")
        return self._buffer

    def clear(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._cleared = True

    def __enter__(self) -> 'Secret':
        return self

    def __exit__(self, *exc_info) -> None:
        self.clear()

    def __repr__(self) -> str:
        return "Secret(cleared)" if self._cleared else "Secret(****)"

# --- Path Validation ---
def validate_directory_path(path_str: Union[str, Path]) -> Path:
    """Resolves a source directory, raising ValidationError when it is unusable."""
    if not str(path_str).strip():
        raise ValidationError("Empty path not allowed.")
    try:
        path = Path(str(path_str).strip()).resolve()
    except (OSError, RuntimeError) as e:
        raise ValidationError(f"Invalid directory path: {e}")
    if not path.exists():
        raise ValidationError(f"Source directory does not exist: {path}")
    if not path.is_dir():
        raise ValidationError(f"Source path is not a directory: {path}")
    if not os.access(path, os.R_OK | os.X_OK):
        raise ValidationError(f"No read permission: {path}")
    return path

def validate_destination_path(path_str: Union[str, Path], source_root: Path) -> Path:
    if not str(path_str).strip():
        raise ValidationError("Empty destination path not allowed.")
    path = Path(str(path_str).strip()).resolve()
    if path == source_root:
        raise ValidationError("Destination directory must differ from the source directory.")
    if path in source_root.parents:
        raise ValidationError("Destination directory must not contain the source directory.")
    if path.exists() and not path.is_dir():
        raise ValidationError(f"Destination exists and is not a directory: {path}")
    return path

# --- Helper Functions ---
def format_duration(seconds: float) -> str:
    if seconds < 60: return f"{seconds:.2f} seconds"
    minutes, seconds = divmod(seconds, 60)
    return f"{int(minutes)} minute(s) and {seconds:.2f} seconds"

def get_password(config: Dict, prompt_message: str = "Enter encryption passphrase: ") -> Secret:
    """Prompts twice without echo. Weak passphrases are re-prompted, empty or mismatched ones abort."""
    is_debug = is_enabled(config, 'debug_mode')
    check_strength = is_enabled(config, 'enforce_password_strength', 'yes') and not is_debug
    if is_debug: print("\n-- WARNING: DEBUG MODE IS ON. Password strength check is disabled. --")
    while True:
        password = getpass.getpass(prompt_message)
        if not password:
            raise PassphraseError("An empty passphrase is not allowed. Aborting.")
        if check_strength:
            strength = zxcvbn(password)
            if strength['score'] < 3:
                print(f"❌ Passphrase is too weak (Score: {strength['score']}/4).")
                if feedback := strength['feedback']['warning']: print(f"   Hint: {feedback}")
                for suggestion in strength['feedback'].get('suggestions', []): print(f"   Suggestion: {suggestion}")
                print("Please try a stronger passphrase."); continue
        password_confirm = getpass.getpass("Confirm passphrase: ")
        if password != password_confirm:
            raise PassphraseError("Passphrases do not match. Aborting.")
        return Secret(password)

def read_password_stdin(stream: Optional[TextIO] = None) -> Secret:
    """Reads a single passphrase line from standard input, for non-interactive runs."""
    stream = stream or sys.stdin
    line = stream.readline()
    password = line.rstrip('\r\n')
    if not password:
        raise PassphraseError("An empty passphrase is not allowed. Aborting.")
    return Secret(password)
