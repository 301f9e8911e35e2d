"""Decode and unpack downloaded archives (tar family, zip) or plain binaries."""

from __future__ import annotations

import io
import logging
import os
import shutil
import stat
import sys
import tarfile
import tempfile
import zipfile
from collections.abc import Iterable
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import BinaryIO

import zstandard

from .extracted_files import ExtractedFiles

log = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform == "win32"


class TarBasedFmt(Enum):
    """Tar archives, optionally compressed."""

    TAR = "tar"
    TBZ2 = "tbz2"
    TGZ = "tgz"
    TXZ = "txz"
    TZSTD = "tzstd"

    def __str__(self) -> str:
        return self.value


class PkgFmt(Enum):
    """Every package format a download can come in."""

    TAR = "tar"
    TBZ2 = "tbz2"
    TGZ = "tgz"
    TXZ = "txz"
    TZSTD = "tzstd"
    ZIP = "zip"
    BIN = "bin"

    def __str__(self) -> str:
        return self.value

    def decompose(self) -> TarBasedFmt | PkgFmt:
        """Return the TarBasedFmt for tar formats, otherwise PkgFmt.ZIP or PkgFmt.BIN."""
        if self in (PkgFmt.ZIP, PkgFmt.BIN):
            return self
        return TarBasedFmt(self.value)


_TAR_MODES = {
    TarBasedFmt.TAR: "r|",
    TarBasedFmt.TBZ2: "r|bz2",
    TarBasedFmt.TGZ: "r|gz",
    TarBasedFmt.TXZ: "r|xz",
}


def create_tar_decoder(stream: BinaryIO, fmt: TarBasedFmt) -> tarfile.TarFile:
    """Open a streaming tar reader over `stream`, decompressing as `fmt` requires."""
    if fmt is TarBasedFmt.TZSTD:
        reader = zstandard.ZstdDecompressor().stream_reader(stream, read_across_frames=True)
        return tarfile.open(fileobj=reader, mode="r|")
    return tarfile.open(fileobj=stream, mode=_TAR_MODES[fmt])


class _ChunkReader(io.RawIOBase):
    """Readable view over an iterable of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        super().__init__()
        self._chunks = iter(chunks)
        self._pending = memoryview(b"")

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if len(buffer) == 0:
            return 0
        while not self._pending:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._pending = memoryview(bytes(chunk))
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count


def _apply_mode(path: Path, mode: int) -> None:
    if os.name == "posix":
        os.chmod(path, mode & 0o777)


def _tar_entry_parts(name: str) -> tuple[str, ...] | None:
    """Relative components of a tar entry name; None if it climbs with `..`."""
    parts = tuple(part for part in PurePosixPath(name).parts if part not in ("/", "."))
    if ".." in parts or not parts:
        return None
    return parts


def _checked_target(dst: Path, parts: tuple[str, ...]) -> Path:
    target = dst.joinpath(*parts)
    parent = target.parent
    parent.mkdir(parents=True, exist_ok=True)
    resolved = parent.resolve()
    if resolved != dst and dst not in resolved.parents:
        raise OSError(f"trying to unpack outside of destination path: {dst}")
    return target


def _unpack_regular(tar: tarfile.TarFile, member: tarfile.TarInfo, dst: Path) -> tuple[str, ...] | None:
    parts = _tar_entry_parts(member.name)
    if parts is None:
        return None
    target = _checked_target(dst, parts)
    if target.is_symlink() or target.is_file():
        target.unlink()
    source = tar.extractfile(member)
    with source, open(target, "wb") as out:
        shutil.copyfileobj(source, out)
    _apply_mode(target, member.mode)
    return parts


def _unpack_dir(member: tarfile.TarInfo, dst: Path) -> bool:
    parts = _tar_entry_parts(member.name)
    if parts is None:
        return False
    target = _checked_target(dst, parts)
    target.mkdir(exist_ok=True)
    _apply_mode(target, member.mode)
    return True


def extract_tar_based_stream(
    chunks: Iterable[bytes], dst: os.PathLike | str, fmt: TarBasedFmt
) -> ExtractedFiles:
    """Unpack regular files and directories of a tar stream into `dst`.

    Entries whose path contains `..` are skipped; other entry kinds are ignored.
    """
    dst = Path(dst)
    log.debug("Extracting from %s archive to %s", fmt, dst)

    dst.parent.mkdir(parents=True, exist_ok=True)
    if not os.path.lexists(dst):
        dst.mkdir(parents=True)
    try:
        dst = dst.resolve(strict=True)
    except OSError:
        pass

    extracted = ExtractedFiles()
    # Directories are handled last so their permissions cannot block descendants.
    directories: list[tarfile.TarInfo] = []

    with io.BufferedReader(_ChunkReader(chunks)) as reader, create_tar_decoder(reader, fmt) as tar:
        for member in tar:
            if member.isreg():
                parts = _unpack_regular(tar, member, dst)
                if parts is not None:
                    extracted.add_file(PurePosixPath(*parts))
            elif member.isdir():
                directories.append(member)

    for member in directories:
        if _unpack_dir(member, dst):
            extracted.add_dir(member.name)

    return extracted


def _sanitized_zip_name(filename: str) -> str | None:
    parts = [part for part in filename.replace("\\", "/").split("/") if part not in ("", ".")]
    if not parts or any(part == ".." or ":" in part for part in parts):
        return None
    return "/".join(parts)


def _is_zip_symlink(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def _write_zip_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo, path: Path) -> None:
    with archive.open(info) as source, open(path, "wb") as out:
        shutil.copyfileobj(source, out)


def extract_zip_file(f: BinaryIO, dir: os.PathLike | str) -> ExtractedFiles:
    """Extract files and symlinks from the zip archive `f` into `dir`."""
    dir = Path(dir)
    extracted = ExtractedFiles()

    with zipfile.ZipFile(f) as archive:
        for info in archive.infolist():
            name = _sanitized_zip_name(info.filename)
            if name is None:
                continue
            path = dir / name
            path.parent.mkdir(parents=True, exist_ok=True)

            if info.is_dir():
                continue

            extracted.add_file(name)

            if _is_zip_symlink(info) and not _IS_WINDOWS:
                if path.is_file() and not path.is_symlink():
                    path.unlink()
                target = archive.read(info).decode("utf-8")
                # Refuse links that point outward.
                if ".." in target:
                    continue
                os.symlink(target, path)
            else:
                _write_zip_entry(archive, info, path)

    return extracted


def _write_chunks(chunks: Iterable[bytes], out: BinaryIO) -> None:
    for chunk in chunks:
        out.write(chunk)
    out.flush()


def extract_bin(chunks: Iterable[bytes], path: os.PathLike | str) -> ExtractedFiles:
    """Write the downloaded bytes to `path` as a single file."""
    path = Path(path)
    log.debug("Writing to `%s`", path)
    path.parent.mkdir(parents=True, exist_ok=True)

    extracted = ExtractedFiles()
    extracted.add_file(path.name)
    with open(path, "wb") as out:
        _write_chunks(chunks, out)
    return extracted


def extract_zip(chunks: Iterable[bytes], path: os.PathLike | str) -> ExtractedFiles:
    """Spool a zip download to a temporary file and extract it into `path`."""
    path = Path(path)
    log.debug("Downloading from zip archive to tempfile")
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryFile() as spool:
        _write_chunks(chunks, spool)
        spool.seek(0)
        log.debug("Decompressing from zip archive to `%s`", path)
        return extract_zip_file(spool, path)