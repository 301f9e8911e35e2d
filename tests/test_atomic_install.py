import os
import stat
from pathlib import Path

import pytest

from binstallkit.atomic_install import (
    atomic_install,
    atomic_install_noclobber,
    atomic_symlink_file,
    atomic_symlink_file_noclobber,
)


def test_atomic_install_moves_file(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(b"data")

    atomic_install(src, dst)

    assert dst.read_bytes() == b"data"
    assert not src.exists()


def test_atomic_install_replaces_existing(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(b"new")
    dst.write_bytes(b"old")

    atomic_install(src, dst)

    assert dst.read_bytes() == b"new"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["dst"]


def test_noclobber_copies_and_keeps_source(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(b"payload")
    os.chmod(src, 0o751)

    atomic_install_noclobber(src, dst)

    assert src.read_bytes() == b"payload"
    assert dst.read_bytes() == b"payload"
    assert stat.S_IMODE(dst.stat().st_mode) == stat.S_IMODE(src.stat().st_mode)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["dst", "src"]


def test_noclobber_fails_when_destination_exists(tmp_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.write_bytes(b"new")
    dst.write_bytes(b"old")

    with pytest.raises(FileExistsError):
        atomic_install_noclobber(src, dst)

    assert dst.read_bytes() == b"old"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["dst", "src"]


def test_symlink_points_to_destination(tmp_path):
    link = tmp_path / "link"

    atomic_symlink_file(Path("target"), link)

    assert os.readlink(link) == "target"


def test_symlink_replaces_existing_file(tmp_path):
    link = tmp_path / "link"
    link.write_bytes(b"old")

    atomic_symlink_file(Path("target"), link)

    assert link.is_symlink()
    assert os.readlink(link) == "target"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["link"]


def test_symlink_noclobber_creates_link(tmp_path):
    link = tmp_path / "link"

    atomic_symlink_file_noclobber(Path("target"), link)

    assert os.readlink(link) == "target"


def test_symlink_noclobber_fails_when_link_exists(tmp_path):
    link = tmp_path / "link"
    link.write_bytes(b"old")

    with pytest.raises(FileExistsError):
        atomic_symlink_file_noclobber(Path("target"), link)

    assert link.read_bytes() == b"old"


def test_symlink_without_parent_is_an_error(tmp_path):
    with pytest.raises(OSError):
        atomic_symlink_file(tmp_path / "target", Path("/"))