"""Atomically install a regular file or a symlink at a destination.

Installation is either "noclobber" (fail if the destination exists) or
replaces the destination atomically if it already exists.
"""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path

log = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform == "win32"


def _parent(path: Path) -> Path:
    if path.name == "":
        raise OSError(errno.EINVAL, f"`{path}` does not have a parent")
    return path.parent


def _reserve_temp_name(directory: Path) -> Path:
    """Pick an unused name in `directory` and leave nothing behind at it."""
    log.debug("Creating named tempfile at '%s'", directory)
    fd, name = tempfile.mkstemp(dir=directory)
    os.close(fd)
    os.remove(name)
    return Path(name)


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def _copy_to_tempfile(src: Path, dst: Path) -> Path:
    temp = _reserve_temp_name(_parent(dst))
    try:
        log.debug("Copying from '%s' to '%s'", src, temp)
        shutil.copyfile(src, temp)
        log.debug("Copying permissions of '%s' to '%s'", src, temp)
        shutil.copymode(src, temp)
    except BaseException:
        _discard(temp)
        raise
    return temp


def atomic_install_noclobber(src: os.PathLike | str, dst: os.PathLike | str) -> None:
    """Install a copy of `src` at `dst`; fails if `dst` already exists."""
    src, dst = Path(src), Path(dst)
    log.debug("Attempting to install from '%s' to '%s'.", src, dst)

    temp = _copy_to_tempfile(src, dst)
    try:
        log.debug("Persisting '%s' to '%s', fail if dst already exists", temp, dst)
        os.link(temp, dst)
    finally:
        _discard(temp)


def atomic_install(src: os.PathLike | str, dst: os.PathLike | str) -> None:
    """Move `src` to `dst`, atomically replacing `dst` if it exists."""
    src, dst = Path(src), Path(dst)
    log.debug("Attempting to atomically rename from '%s' to '%s'", src, dst)

    try:
        os.replace(src, dst)
    except OSError as err:
        log.warning(
            "Attempting at atomic rename failed: %s, fallback to other methods.", err
        )
    else:
        log.debug("Attempting at atomically succeeded.")
        return

    # src and dst are probably on different filesystems: copy next to dst first.
    temp = _copy_to_tempfile(src, dst)
    try:
        log.debug("Persisting '%s' to '%s'", temp, dst)
        os.replace(temp, dst)
    except BaseException:
        _discard(temp)
        raise


def atomic_symlink_file_noclobber(dest: os.PathLike | str, link: os.PathLike | str) -> None:
    """Create a symlink at `link` pointing to `dest`; fails if `link` exists."""
    dest, link = Path(dest), Path(link)
    try:
        os.symlink(dest, link)
    except OSError:
        # Symlinks may be disabled on some Windows editions; fall back to a copy.
        if _IS_WINDOWS:
            atomic_install_noclobber(dest, link)
        else:
            raise


def atomic_symlink_file(dest: os.PathLike | str, link: os.PathLike | str) -> None:
    """Create a symlink at `link` pointing to `dest`, replacing `link` atomically."""
    dest, link = Path(dest), Path(link)
    temp = _reserve_temp_name(_parent(link))

    log.debug("Creating symlink '%s' to file '%s'", temp, dest)
    try:
        os.symlink(dest, temp)
    except OSError:
        if _IS_WINDOWS:
            atomic_install(dest, link)
            return
        raise

    try:
        log.debug("Persisting '%s' to '%s'", temp, link)
        os.replace(temp, link)
    except BaseException:
        _discard(temp)
        raise