"""Tests for mapping source files onto destination ciphertext paths."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from mirrorcrypt.errors import DestinationCollisionError, PathEscapeError
from mirrorcrypt.mapper import PathMapper
from mirrorcrypt.report import FailureReason


def test_destination_mirrors_relative_structure(tmp_path: Path):
    mapper = PathMapper(tmp_path / "src", tmp_path / "dst", ".enc")
    assert mapper.destination_for(tmp_path / "src" / "a.txt") == tmp_path / "dst" / "a.txt.enc"
    assert mapper.destination_for(tmp_path / "src" / "sub" / "deep" / "b.tar.gz") == \
        tmp_path / "dst" / "sub" / "deep" / "b.tar.gz.enc"


def test_task_carries_posix_relative_path(tmp_path: Path):
    mapper = PathMapper(tmp_path / "src", tmp_path / "dst")
    task = mapper.task_for(tmp_path / "src" / "sub" / "b.txt")
    assert task.relative_path == "sub/b.txt"
    assert task.source_path == tmp_path / "src" / "sub" / "b.txt"
    assert task.destination_path == tmp_path / "dst" / "sub" / "b.txt.enc"


def test_map_creates_parent_directories(tmp_path: Path):
    mapper = PathMapper(tmp_path / "src", tmp_path / "dst")
    destination = mapper.map(tmp_path / "src" / "x" / "y" / "z.bin")
    assert destination.parent.is_dir()
    assert not destination.exists()
    # Creating the same chain again is not an error.
    mapper.ensure_parent(destination)


def test_parent_segments_cannot_escape_destination(tmp_path: Path):
    mapper = PathMapper(tmp_path / "src", tmp_path / "dst")
    crafted = tmp_path / "src" / ".." / ".." / "outside.txt"
    with pytest.raises(PathEscapeError) as excinfo:
        mapper.map(crafted)
    assert excinfo.value.reason is FailureReason.PATH_ERROR
    assert not (tmp_path.parent / "outside.txt.enc").exists()
    assert not (tmp_path / "dst").exists()


def test_file_outside_source_root_falls_back_to_base_name(tmp_path: Path, caplog):
    mapper = PathMapper(tmp_path / "src", tmp_path / "dst")
    with caplog.at_level(logging.WARNING, logger="mirrorcrypt.mapper"):
        destination = mapper.destination_for(tmp_path / "elsewhere" / "deep" / "note.md")
    assert destination == tmp_path / "dst" / "note.md.enc"
    assert "base name" in caplog.text


def test_file_in_the_way_of_a_directory_is_a_collision(tmp_path: Path):
    (tmp_path / "dst").mkdir()
    (tmp_path / "dst" / "sub").write_bytes(b"not a directory")
    mapper = PathMapper(tmp_path / "src", tmp_path / "dst")
    with pytest.raises(DestinationCollisionError) as excinfo:
        mapper.map(tmp_path / "src" / "sub" / "b.txt")
    assert excinfo.value.reason is FailureReason.COLLISION
