"""Tests for enumerating regular files under the source root."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from mirrorcrypt.errors import DirectoryAccessError
from mirrorcrypt.walker import walk_source_tree


def _relative(paths, root: Path):
    return sorted(p.relative_to(root).as_posix() for p in paths)


def test_yields_regular_files_including_hidden(source_tree: Path):
    (source_tree / ".hidden").write_text("h", encoding="utf-8")
    (source_tree / "empty_dir").mkdir()
    assert _relative(walk_source_tree(source_tree), source_tree) == [".hidden", "a.txt", "sub/b.txt"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
def test_symlinks_are_neither_yielded_nor_followed(source_tree: Path, tmp_path: Path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("s", encoding="utf-8")
    os.symlink(source_tree / "a.txt", source_tree / "link.txt")
    os.symlink(outside, source_tree / "linked_dir", target_is_directory=True)
    assert _relative(walk_source_tree(source_tree), source_tree) == ["a.txt", "sub/b.txt"]


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="FIFOs not supported")
def test_fifos_are_ignored(source_tree: Path):
    os.mkfifo(source_tree / "pipe")
    assert _relative(walk_source_tree(source_tree), source_tree) == ["a.txt", "sub/b.txt"]


def test_excluded_directory_is_pruned(source_tree: Path):
    inner = source_tree / "encrypted"
    inner.mkdir()
    (inner / "a.txt.enc").write_bytes(b"ciphertext")
    files = walk_source_tree(source_tree, exclude=[inner])
    assert _relative(files, source_tree) == ["a.txt", "sub/b.txt"]


def test_walk_is_single_pass(source_tree: Path):
    files = walk_source_tree(source_tree)
    assert len(list(files)) == 2
    assert list(files) == []


def _deny(monkeypatch, denied: Path):
    real_scandir = os.scandir

    def fake_scandir(path):
        if Path(path) == denied:
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr("mirrorcrypt.walker.os.scandir", fake_scandir)


def test_unreadable_directory_is_reported_and_siblings_continue(source_tree: Path, monkeypatch):
    (source_tree / "zzz").mkdir()
    (source_tree / "zzz" / "c.txt").write_text("charlie", encoding="utf-8")
    _deny(monkeypatch, source_tree / "sub")
    errors = []
    files = walk_source_tree(source_tree, on_error=errors.append)
    assert _relative(files, source_tree) == ["a.txt", "zzz/c.txt"]
    assert len(errors) == 1
    assert errors[0].path == source_tree / "sub"


def test_unreadable_directory_raises_without_handler(source_tree: Path, monkeypatch):
    _deny(monkeypatch, source_tree / "sub")
    with pytest.raises(DirectoryAccessError):
        list(walk_source_tree(source_tree))
