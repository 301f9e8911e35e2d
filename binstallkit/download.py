"""Download a remote file and extract it to disk or visit its tar entries in memory."""

from __future__ import annotations

import contextlib
import io
import logging
import lzma
import os
import tarfile
import zipfile
import zlib
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from enum import Enum
from pathlib import Path, PurePosixPath

import zstandard

from .extract import (
    PkgFmt,
    TarBasedFmt,
    create_tar_decoder,
    extract_bin,
    extract_tar_based_stream,
    extract_zip,
)
from .extracted_files import ExtractedFiles
from .remote import Client, RemoteError, Response

log = logging.getLogger(__name__)

_IO_ERRORS = (
    OSError,
    EOFError,
    tarfile.TarError,
    zstandard.ZstdError,
    lzma.LZMAError,
    zlib.error,
)


class DownloadError(Exception):
    """Downloading or extracting failed; `source` holds the underlying error."""

    def __init__(self, message: str, source: BaseException | None = None) -> None:
        super().__init__(message)
        self.source = source


@contextlib.contextmanager
def _download_errors() -> Iterator[None]:
    try:
        yield
    except DownloadError:
        raise
    except RemoteError as err:
        raise DownloadError(f"Failed to download from remote: {err}", err) from err
    except zipfile.BadZipFile as err:
        raise DownloadError(f"Failed to extract zipfile: {err}", err) from err
    except _IO_ERRORS as err:
        raise DownloadError(f"I/O Error: {err}", err) from err


class DataVerifier:
    """Digests downloaded data chunk by chunk; the default accepts everything."""

    def update(self, data: bytes) -> None:
        """Digest the next chunk, in the order received."""

    def validate(self) -> bool:
        """Return False if the data digested so far is invalid."""
        return True


class TarEntryType(Enum):
    REGULAR = "regular"
    LINK = "link"
    SYMLINK = "symlink"
    CHAR = "char"
    BLOCK = "block"
    DIRECTORY = "directory"
    FIFO = "fifo"
    UNKNOWN = "unknown"


_TAR_TYPES = {
    tarfile.REGTYPE: TarEntryType.REGULAR,
    tarfile.AREGTYPE: TarEntryType.REGULAR,
    # Implementation-defined "high-performance" type, treated as a regular file.
    tarfile.CONTTYPE: TarEntryType.REGULAR,
    tarfile.LNKTYPE: TarEntryType.LINK,
    tarfile.SYMTYPE: TarEntryType.SYMLINK,
    tarfile.CHRTYPE: TarEntryType.CHAR,
    tarfile.BLKTYPE: TarEntryType.BLOCK,
    tarfile.DIRTYPE: TarEntryType.DIRECTORY,
    tarfile.FIFOTYPE: TarEntryType.FIFO,
}


class TarEntry:
    """One entry of a tar archive being read as a stream."""

    def __init__(self, info: tarfile.TarInfo, fileobj: io.BufferedIOBase | None) -> None:
        self._info = info
        self._fileobj = fileobj

    @property
    def path(self) -> PurePosixPath:
        """The entry's path; `\\` is treated as a directory separator."""
        return PurePosixPath(self._info.name.replace("\\", "/"))

    @property
    def size(self) -> int:
        return self._info.size

    @property
    def entry_type(self) -> TarEntryType:
        return _TAR_TYPES.get(self._info.type, TarEntryType.UNKNOWN)

    def read(self, size: int = -1) -> bytes:
        """Read the entry's data; entries without data read as empty."""
        if self._fileobj is None:
            return b""
        return self._fileobj.read(size)

    def __repr__(self) -> str:
        return f"TarEntry(path={str(self.path)!r}, type={self.entry_type.name}, size={self.size})"


class TarEntriesVisitor(ABC):
    """Called once per entry; entries come in archive order."""

    @abstractmethod
    def visit(self, entry: TarEntry) -> None:
        """Process one entry; raise DownloadError to stop."""


class _ChunkReader(io.RawIOBase):
    def __init__(self, chunks: Iterable[bytes]) -> None:
        super().__init__()
        self._chunks = iter(chunks)
        self._pending = memoryview(b"")

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        target = memoryview(buffer).cast("B")
        if len(target) == 0:
            return 0
        while not self._pending:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._pending = memoryview(bytes(chunk))
        count = min(len(target), len(self._pending))
        target[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count


def extract_tar_based_stream_and_visit(
    chunks: Iterable[bytes], fmt: TarBasedFmt, visitor: TarEntriesVisitor
) -> None:
    """Decode a tar stream and hand each entry to `visitor`."""
    log.debug("Extracting from %s archive to process it in memory", fmt)
    with _download_errors():
        with io.BufferedReader(_ChunkReader(chunks)) as reader, create_tar_decoder(
            reader, fmt
        ) as tar:
            for member in tar:
                fileobj = tar.extractfile(member) if member.isreg() else None
                try:
                    visitor.visit(TarEntry(member, fileobj))
                finally:
                    if fileobj is not None:
                        fileobj.close()


def _consume_stream(stream: Iterator[bytes]) -> None:
    try:
        for _ in stream:
            pass
    except Exception as err:  # noqa: BLE001 - only logged, as the data is unwanted
        log.error("failed to consume stream: %s", err)


class Download:
    """A download from `url`, or from an already received response."""

    def __init__(
        self,
        client: Client | None,
        url: str | None,
        data_verifier: DataVerifier | None = None,
        *,
        _response: Response | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._response = _response
        self._data_verifier = data_verifier

    @classmethod
    def from_response(
        cls, response: Response, data_verifier: DataVerifier | None = None
    ) -> Download:
        return cls(None, None, data_verifier, _response=response)

    def with_data_verifier(self, data_verifier: DataVerifier) -> Download:
        return Download(self._client, self._url, data_verifier, _response=self._response)

    def __repr__(self) -> str:
        if self._response is not None:
            return f"Download(response={self._response.url!r})"
        return f"Download(url={self._url!r})"

    def _into_response(self) -> Response:
        if self._response is not None:
            return self._response
        return self._client.get(self._url).send(True)

    def _get_stream(self) -> Iterator[bytes]:
        response = self._into_response()
        verifier = self._data_verifier

        def stream() -> Iterator[bytes]:
            for chunk in response.bytes_stream():
                if verifier is not None:
                    verifier.update(chunk)
                yield chunk

        return stream()

    def _finish_stream(self, stream) -> None:
        if self._data_verifier is not None:
            _consume_stream(stream)
        stream.close()

    def and_visit_tar(self, fmt: TarBasedFmt, visitor: TarEntriesVisitor) -> None:
        """Download a tar-based archive and visit its entries in memory."""
        with _download_errors():
            stream = self._get_stream()
            log.debug("Downloading and extracting then in-memory processing")
            try:
                extract_tar_based_stream_and_visit(stream, fmt, visitor)
            finally:
                self._finish_stream(stream)
        log.debug("Download, extraction and in-memory procession OK")

    def and_extract(self, fmt: PkgFmt, path: os.PathLike | str) -> ExtractedFiles:
        """Download and extract to `path`; only directories and regular files are kept."""
        path = Path(path)
        with _download_errors():
            stream = self._get_stream()
            log.debug("Downloading and extracting to: '%s'", path)
            try:
                decomposed = fmt.decompose()
                if isinstance(decomposed, TarBasedFmt):
                    extracted = extract_tar_based_stream(stream, path, decomposed)
                elif decomposed is PkgFmt.BIN:
                    extracted = extract_bin(stream, path)
                else:
                    extracted = extract_zip(stream, path)
            finally:
                self._finish_stream(stream)
        log.debug("Download OK, extracted to: '%s'", path)
        return extracted

    def into_bytes(self) -> bytes:
        """Download the whole body into memory."""
        with _download_errors():
            data = self._into_response().bytes()
        if self._data_verifier is not None:
            self._data_verifier.update(data)
        return data