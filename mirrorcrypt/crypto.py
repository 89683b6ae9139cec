# mirrorcrypt/crypto.py
"""
Authenticated encryption of single files.

Container layout (integers big-endian), the whole header is authenticated
as associated data:

    magic "MCRY" | version u8 | cipher id u8 | kdf id u8 | iterations u32
    | salt length u8 | salt | nonce length u8 | nonce | ciphertext | tag (16)
"""
import errno
import hashlib
import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple

import psutil
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from tqdm import tqdm

from .config import is_enabled
from .errors import BackendUnavailableError, PerFileError
from .report import FailureReason
from .utils import Secret

logger = logging.getLogger(__name__)

# --- Constants ---
MAGIC = b'MCRY'
FORMAT_VERSION = 1
KDF_PBKDF2_SHA256 = 1
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
CHUNK_SIZE_KB_DEFAULT = 4096
OUTPUT_MODE = 0o600
TEMP_PREFIX = '.mc-'
TEMP_SUFFIX = '.part'
TEMP_TOKEN_BYTES = 12
# Temporaries untouched for this long belong to a crashed run.
STALE_PARTIAL_AGE = 3600

_TEMP_NAME = re.compile(r'\.mc-[0-9a-f]{24}\.part')

_NO_HARDLINK_ERRNOS = {errno.EPERM, errno.EOPNOTSUPP, errno.EXDEV, errno.EMLINK}


# --- Container Header ---
@dataclass(frozen=True)
class ContainerHeader:
    cipher_id: int
    iterations: int
    salt: bytes
    nonce: bytes
    version: int = FORMAT_VERSION
    kdf_id: int = KDF_PBKDF2_SHA256

    def to_bytes(self) -> bytes:
        return b''.join((
            MAGIC,
            self.version.to_bytes(1, 'big'),
            self.cipher_id.to_bytes(1, 'big'),
            self.kdf_id.to_bytes(1, 'big'),
            self.iterations.to_bytes(4, 'big'),
            len(self.salt).to_bytes(1, 'big'), self.salt,
            len(self.nonce).to_bytes(1, 'big'), self.nonce,
        ))

    @property
    def algorithm(self) -> str:
        for backend in BACKENDS.values():
            if backend.cipher_id == self.cipher_id:
                return backend.name
        return f"unknown ({self.cipher_id})"


def read_header(file_path: Path) -> Tuple[ContainerHeader, int]:
    """Parses the header of an encrypted file. Returns the header and the ciphertext length."""
    with file_path.open('rb') as f:
        if f.read(4) != MAGIC:
            raise ValueError("Not an encrypted container (bad magic).")
        fixed = f.read(7)
        if len(fixed) < 7:
            raise ValueError("File is corrupt or too short to contain a header.")
        version, cipher_id, kdf_id = fixed[0], fixed[1], fixed[2]
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported container version {version}.")
        iterations = int.from_bytes(fixed[3:7], 'big')
        salt_size = int.from_bytes(f.read(1), 'big')
        salt = f.read(salt_size)
        nonce_size = int.from_bytes(f.read(1), 'big')
        nonce = f.read(nonce_size)
        if len(salt) < salt_size or len(nonce) < nonce_size or nonce_size == 0:
            raise ValueError("File is corrupt or too short to contain the full salt and nonce.")
        header_size = f.tell()
    body_size = file_path.stat().st_size - header_size - TAG_SIZE
    if body_size < 0:
        raise ValueError("File is truncated: authentication tag missing.")
    return ContainerHeader(cipher_id, iterations, salt, nonce, version, kdf_id), body_size


# --- Backends ---
class CipherBackend:
    """One authenticated cipher. `encrypt_stream` writes ciphertext followed by the tag."""

    name = ''
    cipher_id = 0

    def probe(self) -> None:
        raise NotImplementedError

    def is_available(self) -> bool:
        try:
            self.probe()
        except UnsupportedAlgorithm:
            return False
        return True

    def encrypt_stream(self, key: bytes, nonce: bytes, associated_data: bytes,
                       chunks: Iterable[bytes], write: Callable[[bytes], None]) -> None:
        raise NotImplementedError


class AesGcmBackend(CipherBackend):
    name = 'aes-256-gcm'
    cipher_id = 1

    def probe(self) -> None:
        Cipher(algorithms.AES(bytes(KEY_SIZE)), modes.GCM(bytes(NONCE_SIZE))).encryptor()

    def encrypt_stream(self, key, nonce, associated_data, chunks, write):
        encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
        encryptor.authenticate_additional_data(associated_data)
        for chunk in chunks:
            if data := encryptor.update(chunk): write(data)
        if data := encryptor.finalize(): write(data)
        write(encryptor.tag)


class ChaCha20Poly1305Backend(CipherBackend):
    # The AEAD API is one-shot: the whole file is held in memory.
    name = 'chacha20-poly1305'
    cipher_id = 2

    def probe(self) -> None:
        ChaCha20Poly1305(bytes(KEY_SIZE))

    def encrypt_stream(self, key, nonce, associated_data, chunks, write):
        plaintext = b''.join(chunks)
        write(ChaCha20Poly1305(key).encrypt(nonce, plaintext, associated_data))


BACKENDS: Dict[str, CipherBackend] = {
    AesGcmBackend.name: AesGcmBackend(),
    ChaCha20Poly1305Backend.name: ChaCha20Poly1305Backend(),
}


def select_backend(preferred: str = AesGcmBackend.name) -> CipherBackend:
    """Returns the preferred backend if usable, else any other usable one."""
    ordered = [preferred] + [name for name in BACKENDS if name != preferred]
    for name in ordered:
        backend = BACKENDS.get(name)
        if backend and backend.is_available():
            if name != preferred:
                logger.warning("Cipher '%s' is not available, falling back to '%s'.", preferred, name)
            logger.info("Using cipher backend %s", name)
            return backend
    raise BackendUnavailableError("Neither AES-256-GCM nor ChaCha20-Poly1305 is available in the installed 'cryptography' library.")


# --- Key Derivation and Hashing ---
def derive_key(secret: Secret, salt: bytes, iterations: int, key_length: int = KEY_SIZE) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=key_length, salt=salt, iterations=iterations)
    return kdf.derive(secret.buffer())


def calculate_hash(file_path: Path, config: Dict, algorithm: str = 'sha256') -> Optional[str]:
    """Calculates the hash of a file in chunks."""
    chunk_size = int(config.get('chunk_size_kb', CHUNK_SIZE_KB_DEFAULT)) * 1024
    hasher = hashlib.new(algorithm)
    try:
        with file_path.open('rb') as f:
            for chunk in iter(lambda: f.read(chunk_size), b''): hasher.update(chunk)
        return hasher.hexdigest()
    except OSError as e:
        logger.warning("Error calculating hash of %s: %s", file_path, e)
        return None


# --- File I/O Helpers ---
def _classify_os_error(e: OSError, default: FailureReason) -> FailureReason:
    return FailureReason.PERMISSION_ERROR if isinstance(e, PermissionError) else default


def _read_chunks(f_in, chunk_size: int, source_path: Path, pbar=None, is_debug: bool = False) -> Iterator[bytes]:
    last_update_time = 0.0
    while True:
        try:
            chunk = f_in.read(chunk_size)
        except OSError as e:
            raise PerFileError(_classify_os_error(e, FailureReason.READ_ERROR), f"Read failed: {e}", source_path) from e
        if not chunk:
            return
        if pbar is not None:
            pbar.update(len(chunk))
            if is_debug and (time.time() - last_update_time > 0.5):
                pbar.set_postfix_str(f"CPU: {psutil.cpu_percent()}% | RAM: {psutil.virtual_memory().percent}%")
                last_update_time = time.time()
        yield chunk


def _create_temp_file(destination_path: Path):
    """Opens an exclusive, owner-only temporary file next to the destination.

    The name has a fixed length independent of the destination name, so any
    destination name the filesystem accepts also leaves room for its temporary.
    """
    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, 'O_NOFOLLOW', 0) | getattr(os, 'O_BINARY', 0)
    for _ in range(16):
        tmp_path = destination_path.with_name(f"{TEMP_PREFIX}{secrets.token_hex(TEMP_TOKEN_BYTES)}{TEMP_SUFFIX}")
        try:
            fd = os.open(tmp_path, flags, OUTPUT_MODE)
        except FileExistsError:
            continue
        except OSError as e:
            raise PerFileError(_classify_os_error(e, FailureReason.WRITE_ERROR),
                               f"Cannot create output file: {e}", destination_path) from e
        return tmp_path, os.fdopen(fd, 'wb')
    raise PerFileError(FailureReason.WRITE_ERROR, "Could not create a unique temporary file.", destination_path)


def _publish(tmp_path: Path, destination_path: Path) -> bool:
    """Moves the finished file into place without overwriting. False if the destination appeared meanwhile."""
    try:
        os.link(tmp_path, destination_path)
    except FileExistsError:
        return False
    except OSError as e:
        if e.errno not in _NO_HARDLINK_ERRNOS:
            raise
        # Filesystem without hard links.
        if os.path.lexists(destination_path):
            return False
        os.rename(tmp_path, destination_path)
        return True
    _remove_partial(tmp_path)
    return True


def _remove_partial(tmp_path: Path) -> None:
    try:
        tmp_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error("Could not remove partial output %s: %s", tmp_path, e)


def is_partial_name(name: str) -> bool:
    return _TEMP_NAME.fullmatch(name) is not None


def sweep_stale_partials(directory: Path, max_age: float = STALE_PARTIAL_AGE) -> int:
    """Removes temporaries left in `directory` by a crashed run. Returns how many were removed.

    Only files not modified for `max_age` seconds are touched, so the live
    temporaries of a concurrent run survive.
    """
    cutoff = time.time() - max_age
    removed = 0
    try:
        with os.scandir(directory) as it:
            entries = [entry for entry in it if is_partial_name(entry.name)]
    except OSError as e:
        logger.warning("Cannot scan %s for stale partial output: %s", directory, e)
        return 0
    for entry in entries:
        try:
            if not entry.is_file(follow_symlinks=False) or entry.stat(follow_symlinks=False).st_mtime > cutoff:
                continue
        except OSError:
            continue
        _remove_partial(Path(entry.path))
        if not os.path.lexists(entry.path):
            logger.info("Removed stale partial output %s", entry.path)
            removed += 1
    return removed


# --- Public Entry Point ---
def encrypt_file(secret: Secret, source_path: Path, destination_path: Path, config: Dict,
                 backend: CipherBackend, show_progress: bool = False) -> bool:
    """Encrypts `source_path` into `destination_path`.

    The ciphertext is built in a hidden temporary file and linked into place
    only once complete, so the destination is either a whole container or
    absent. Returns False when the destination already existed at publish
    time. Raises PerFileError on any failure; no partial output is left.
    """
    chunk_size = int(config.get('chunk_size_kb', CHUNK_SIZE_KB_DEFAULT)) * 1024
    iterations = int(config.get('pbkdf2_iterations', 600000))
    salt_size = int(config.get('salt_size_bytes', 16))
    is_debug = is_enabled(config, 'debug_mode')
    use_ascii = config.get('progress_bar_style', 'unicode').lower() == 'ascii'

    try:
        f_in = source_path.open('rb')
    except OSError as e:
        raise PerFileError(_classify_os_error(e, FailureReason.READ_ERROR), f"Cannot open source: {e}", source_path) from e

    with f_in:
        tmp_path, f_out = _create_temp_file(destination_path)
        published = False
        try:
            def write(data: bytes) -> None:
                try:
                    f_out.write(data)
                except OSError as e:
                    raise PerFileError(_classify_os_error(e, FailureReason.WRITE_ERROR), f"Write failed: {e}", destination_path) from e

            with f_out:
                header = ContainerHeader(backend.cipher_id, iterations, os.urandom(salt_size), os.urandom(NONCE_SIZE))
                associated_data = header.to_bytes()
                try:
                    key = derive_key(secret, header.salt, header.iterations)
                except (UnsupportedAlgorithm, ValueError, TypeError) as e:
                    raise PerFileError(FailureReason.CIPHER_ERROR, f"Key derivation failed: {e}", source_path) from e
                write(associated_data)
                pbar = None
                if show_progress:
                    pbar = tqdm(total=os.fstat(f_in.fileno()).st_size, unit='B', unit_scale=True,
                                desc=f"Encrypting {source_path.name}", leave=False, ascii=use_ascii)
                try:
                    chunks = _read_chunks(f_in, chunk_size, source_path, pbar, is_debug)
                    backend.encrypt_stream(key, header.nonce, associated_data, chunks, write)
                except (UnsupportedAlgorithm, ValueError, OverflowError, MemoryError) as e:
                    raise PerFileError(FailureReason.CIPHER_ERROR, f"Encryption failed: {e}", source_path) from e
                finally:
                    if pbar is not None: pbar.close()
                try:
                    f_out.flush()
                    os.fsync(f_out.fileno())
                except OSError as e:
                    raise PerFileError(FailureReason.WRITE_ERROR, f"Flush failed: {e}", destination_path) from e

            try:
                os.chmod(tmp_path, OUTPUT_MODE)
            except OSError as e:
                raise PerFileError(FailureReason.PERMISSION_ERROR, f"Cannot restrict permissions: {e}", destination_path) from e
            try:
                published = _publish(tmp_path, destination_path)
            except OSError as e:
                raise PerFileError(_classify_os_error(e, FailureReason.WRITE_ERROR), f"Cannot move output into place: {e}", destination_path) from e
            if published:
                logger.debug("Encrypted %s -> %s with %s", source_path, destination_path, backend.name)
            return published
        finally:
            if not published:
                _remove_partial(tmp_path)
