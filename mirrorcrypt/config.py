# mirrorcrypt/config.py
import configparser
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path('config.ini')

# Work factor floor for PBKDF2-HMAC-SHA256 (~100 ms on commodity hardware).
MIN_PBKDF2_ITERATIONS = 100000

SUPPORTED_ALGORITHMS = ('aes-256-gcm', 'chacha20-poly1305')

DEFAULT_CONFIG = """
[Settings]
# Suffix appended to every encrypted file name in the destination tree.
encrypted_file_extension = .enc

# Preferred authenticated cipher. If it is not available on this system,
# the other one is used.
# Options: aes-256-gcm / chacha20-poly1305
cipher_algorithm = aes-256-gcm

# Size of the per-file random salt in bytes. 16 is a secure standard.
salt_size_bytes = 16

# --- Security Settings ---

# Number of iterations for the key derivation function (PBKDF2-HMAC-SHA256).
# Higher is more secure but slower. 600000 is a strong baseline.
# Values below 100000 are refused unless debug_mode is on.
pbkdf2_iterations = 600000

# Require a strong passphrase (zxcvbn score of 3 or more) when encrypting.
# Options: yes / no
enforce_password_strength = yes

# --- Destination Settings ---

# Whether two names differing only in case must be treated as the same
# destination file. 'auto' probes the destination filesystem.
# Options: auto / yes / no
case_insensitive_destination = auto

# Print the SHA-256 checksum of every produced ciphertext in the summary.
# Options: yes / no
show_checksums = no

# --- Performance Features ---

# Encrypt several files in parallel with a pool of worker threads.
# The older key name enable_multiprocessing is still accepted.
# Options: yes / no
enable_parallel = no

# Number of parallel worker threads.
# 0 means one worker per available CPU core.
worker_processes = 0

# Chunk size in Kilobytes for reading source files.
chunk_size_kb = 4096

# --- Development Settings ---

# Enables debug logging, resource stats on progress bars and disables the
# password strength check and the iteration floor.
# WARNING: For testing only! Set to 'no' for real encryption.
debug_mode = no

[UI]
# Style of the progress bar.
# Options: unicode (modern style: ███), ascii (compatible style: ###)
progress_bar_style = unicode

# Show progress bars at all.
# Options: yes / no
show_progress = yes

[Logging]
# Options: DEBUG / INFO / WARNING / ERROR
log_level = WARNING
"""


def _flatten(parser: configparser.ConfigParser) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    for section in parser.sections():
        settings.update(dict(parser.items(section)))
    return settings


def _truthy(value) -> bool:
    return str(value).strip().lower() in ('yes', 'true', '1', 'on')


def is_enabled(config: Dict, key: str, default: str = 'no') -> bool:
    return _truthy(config.get(key, default))


def _get_int(config: Dict, key: str, minimum: int, maximum: Optional[int] = None) -> int:
    raw = config.get(key)
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be an integer, got '{raw}'.")
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f"at least {minimum}"
        raise ConfigurationError(f"'{key}' must be {bound}, got {value}.")
    return value


def validate_config(config: Dict) -> Dict:
    """Checks and normalizes the flattened settings in place."""
    debug = is_enabled(config, 'debug_mode')

    extension = str(config.get('encrypted_file_extension', '')).strip()
    if not extension.startswith('.') or len(extension) < 2 or any(c in extension for c in '/\\\0'):
        raise ConfigurationError(f"'encrypted_file_extension' must look like '.enc', got '{extension}'.")
    config['encrypted_file_extension'] = extension

    algorithm = str(config.get('cipher_algorithm', '')).strip().lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ConfigurationError(f"'cipher_algorithm' must be one of {', '.join(SUPPORTED_ALGORITHMS)}, got '{algorithm}'.")
    config['cipher_algorithm'] = algorithm

    config['pbkdf2_iterations'] = _get_int(config, 'pbkdf2_iterations', 1 if debug else MIN_PBKDF2_ITERATIONS, 0xFFFFFFFF)
    config['salt_size_bytes'] = _get_int(config, 'salt_size_bytes', 16, 255)
    config['chunk_size_kb'] = _get_int(config, 'chunk_size_kb', 1)
    config['worker_processes'] = _get_int(config, 'worker_processes', 0)

    legacy_parallel = config.pop('enable_multiprocessing', None)
    parallel = is_enabled(config, 'enable_parallel')
    if legacy_parallel is not None:
        logger.warning("'enable_multiprocessing' is deprecated, use 'enable_parallel' (workers are threads).")
        parallel = parallel or _truthy(legacy_parallel)
    config['enable_parallel'] = 'yes' if parallel else 'no'

    case_mode = str(config.get('case_insensitive_destination', 'auto')).strip().lower()
    if case_mode not in ('auto', 'yes', 'no'):
        raise ConfigurationError(f"'case_insensitive_destination' must be auto, yes or no, got '{case_mode}'.")
    config['case_insensitive_destination'] = case_mode

    level = str(config.get('log_level', 'WARNING')).strip().upper()
    if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        raise ConfigurationError(f"'log_level' must be a logging level name, got '{level}'.")
    config['log_level'] = 'DEBUG' if debug else level
    return config


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Returns the built-in defaults overlaid with `config_path` when it exists."""
    parser = configparser.ConfigParser(interpolation=None)
    parser.read_string(DEFAULT_CONFIG)
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if path.is_file():
        try:
            with path.open(encoding='utf-8') as f:
                parser.read_file(f)
        except (configparser.Error, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Could not parse '{path}': {e}")
        except OSError as e:
            raise ConfigurationError(f"Could not read '{path}': {e}")
        logger.debug("Loaded configuration from %s", path)
    elif config_path:
        raise ConfigurationError(f"Configuration file '{path}' not found.")
    return validate_config(_flatten(parser))


def write_default_config(config_path: Path) -> Path:
    """Creates a commented default config file. Never overwrites."""
    if config_path.exists():
        raise ConfigurationError(f"'{config_path}' already exists; not overwriting it.")
    try:
        config_path.write_text(DEFAULT_CONFIG.strip() + "\n", encoding='utf-8')
    except OSError as e:
        raise ConfigurationError(f"Could not write to '{config_path}': {e}")
    return config_path
