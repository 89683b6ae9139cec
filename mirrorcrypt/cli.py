# mirrorcrypt/cli.py
import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .config import DEFAULT_CONFIG_PATH, load_config, write_default_config
from .core import mirror_encrypt
from .crypto import read_header, select_backend
from .errors import EXIT_INTERRUPTED, EXIT_OK, MirrorCryptError, UsageError
from .utils import get_password, read_password_stdin, validate_destination_path, validate_directory_path

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mirror-crypt',
        description="Mirror a directory tree into an encrypted copy. Originals are never modified.",
    )
    parser.add_argument('paths', nargs='*', metavar='DIR', help="SOURCE_DIR DEST_DIR")
    parser.add_argument('--config', type=Path, default=None,
                        help=f"Path to the INI configuration (default: ./{DEFAULT_CONFIG_PATH} if present)")
    parser.add_argument('--passphrase-stdin', action='store_true',
                        help="Read the passphrase from the first line of standard input instead of prompting")
    parser.add_argument('--no-progress', action='store_true', help="Disable progress bars")
    parser.add_argument('--init-config', action='store_true', help="Write a default configuration file and exit")
    parser.add_argument('--inspect', type=Path, metavar='FILE', help="Print the header metadata of an encrypted file and exit")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    return parser

def configure_logging(config: Dict, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.get('log_level', 'WARNING'))
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s: %(name)s: %(message)s")

def inspect_file(file_path: Path) -> None:
    if not file_path.is_file():
        raise UsageError(f"File not found at '{file_path}'")
    try:
        header, body_size = read_header(file_path)
    except ValueError as e:
        raise UsageError(f"Cannot read '{file_path}': {e}")
    print("\n--- File Metadata Analysis ---")
    print(f"  File: {file_path.name}\n  Total Size: {file_path.stat().st_size} bytes")
    print("-" * 20)
    print(f"  Container Version: {header.version}\n  Cipher: {header.algorithm}")
    print(f"  KDF: PBKDF2-HMAC-SHA256, {header.iterations} iterations")
    print(f"  Salt Size: {len(header.salt)} bytes\n  Salt (hex): {header.salt.hex()}")
    print(f"  Nonce (hex): {header.nonce.hex()}\n  Ciphertext: {body_size} bytes")
    print("------------------------------")

def main(argv: Optional[List[str]] = None) -> int:
    """Runs the tool and returns the process exit status."""
    args = build_parser().parse_args(argv)
    try:
        if not (args.init_config or args.inspect) and len(args.paths) != 2:
            raise UsageError(f"Usage: mirror-crypt <SOURCE_DIR> <DEST_DIR> (got {len(args.paths)} path argument(s))")

        if args.init_config:
            path = write_default_config(args.config or DEFAULT_CONFIG_PATH)
            print(f"✅ Default '{path}' created successfully.")
            return EXIT_OK

        config = load_config(args.config)
        configure_logging(config, args.verbose)

        if args.inspect:
            inspect_file(args.inspect)
            return EXIT_OK

        source_root = validate_directory_path(args.paths[0])
        destination_root = validate_destination_path(args.paths[1], source_root)
        secret = read_password_stdin() if args.passphrase_stdin else get_password(config)
        with secret:
            backend = select_backend(config['cipher_algorithm'])
            show_progress = not args.no_progress and config.get('show_progress', 'yes').lower() == 'yes'
            summary = mirror_encrypt(source_root, destination_root, secret, config, backend, show_progress=show_progress)
    except MirrorCryptError as e:
        print(f"❌ {e}", file=sys.stderr)
        return e.exit_code

    print("\n" + summary.format())
    print("Notes:")
    print("- Originals were NOT deleted. Verify and securely delete originals yourself if desired.")
    print("- Use a strong passphrase; there is no way to recover files without it.")
    return summary.exit_code

def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nProgram terminated by user. Partially written files were removed. 👋")
        sys.exit(EXIT_INTERRUPTED)
