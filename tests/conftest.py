"""Shared fixtures: fast test configuration, a passphrase and small source trees."""

from __future__ import annotations

import configparser
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from mirrorcrypt.config import DEFAULT_CONFIG, validate_config
from mirrorcrypt.crypto import read_header, select_backend
from mirrorcrypt.utils import Secret

PASSPHRASE = "correct horse battery staple"


def make_config(**overrides) -> dict:
    parser = configparser.ConfigParser(interpolation=None)
    parser.read_string(DEFAULT_CONFIG)
    settings = {}
    for section in parser.sections():
        settings.update(dict(parser.items(section)))
    # Debug mode lifts the iteration floor so tests stay fast.
    settings.update({
        'debug_mode': 'yes',
        'pbkdf2_iterations': '1000',
        'show_progress': 'no',
        'case_insensitive_destination': 'no',
    })
    settings.update({key: str(value) for key, value in overrides.items()})
    return validate_config(settings)


@pytest.fixture
def config() -> dict:
    return make_config()


@pytest.fixture
def secret():
    with Secret(PASSPHRASE) as value:
        yield value


@pytest.fixture
def backend():
    return select_backend('aes-256-gcm')


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    root = tmp_path / "source"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    (root / "sub" / "b.txt").write_text("bravo", encoding="utf-8")
    return root


@pytest.fixture
def dest_root(tmp_path: Path) -> Path:
    return tmp_path / "dest"


@pytest.fixture
def decrypt_container():
    """Decrypts a container with the cryptography AEAD classes directly."""

    def _decrypt(path: Path, passphrase: str = PASSPHRASE) -> bytes:
        header, _ = read_header(path)
        associated_data = header.to_bytes()
        blob = path.read_bytes()
        assert blob.startswith(associated_data)
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=header.salt, iterations=header.iterations)
        key = kdf.derive(passphrase.encode("utf-8"))
        aead = AESGCM(key) if header.cipher_id == 1 else ChaCha20Poly1305(key)
        return aead.decrypt(header.nonce, blob[len(associated_data):], associated_data)

    return _decrypt


@pytest.fixture
def config_factory():
    return make_config
