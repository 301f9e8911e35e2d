import io
import tarfile
import zipfile
from pathlib import PurePath

import pytest
import responses
import zstandard

from binstallkit.download import (
    DataVerifier,
    Download,
    DownloadError,
    TarEntriesVisitor,
    TarEntryType,
    extract_tar_based_stream_and_visit,
)
from binstallkit.extract import PkgFmt, TarBasedFmt
from binstallkit.extracted_files import ExtractedFilesEntry
from binstallkit.remote import Client, HttpError

BASE = "https://downloads.example.com"


def _tar_bytes(files, dirs=(), mode="w", symlinks=()):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for d in dirs:
            info = tarfile.TarInfo(d)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
        for name, target in symlinks:
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
    return buf.getvalue()


def _zip_bytes(files):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return buf.getvalue()


class CollectingVerifier(DataVerifier):
    def __init__(self):
        self.chunks = []

    def update(self, data):
        self.chunks.append(bytes(data))


class RecordingVisitor(TarEntriesVisitor):
    def __init__(self):
        self.seen = []

    def visit(self, entry):
        self.seen.append((str(entry.path), entry.entry_type, entry.size, entry.read()))


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def client():
    return Client("binstallkit-tests/0", per_millis=10, num_request=10)


def test_extract_single_file_tgz(rsps, client, tmp_path):
    url = f"{BASE}/cargo-binstall-aarch64-unknown-linux-musl.tgz"
    rsps.add(responses.GET, url, body=_tar_bytes({"cargo-binstall": b"\x7fELF"}, mode="w:gz"))

    extracted = Download(client, url).and_extract(PkgFmt.TGZ, tmp_path / "out")

    assert extracted.has_file("cargo-binstall")
    assert not extracted.has_file("1234")
    assert extracted.get_dir(".") == {"cargo-binstall"}
    assert extracted.entries == {
        PurePath("cargo-binstall"): ExtractedFilesEntry.file(),
        PurePath("."): ExtractedFilesEntry.directory({"cargo-binstall"}),
    }
    assert (tmp_path / "out" / "cargo-binstall").read_bytes() == b"\x7fELF"


def test_extract_nested_txz(rsps, client, tmp_path):
    top = "cargo-watch-v8.4.0-aarch64-unknown-linux-gnu"
    files = {
        f"{top}/README.md": b"readme",
        f"{top}/LICENSE": b"license",
        f"{top}/completions/zsh": b"zsh",
        f"{top}/cargo-watch": b"bin",
        f"{top}/cargo-watch.1": b"man",
    }
    url = f"{BASE}/cargo-watch.tar.xz"
    rsps.add(
        responses.GET,
        url,
        body=_tar_bytes(files, dirs=(top, f"{top}/completions"), mode="w:xz"),
    )

    extracted = Download(client, url).and_extract(PkgFmt.TXZ, tmp_path)
    top_path = PurePath(top)

    assert extracted.get_dir(".") == {top}
    assert extracted.get_dir(top_path) == {
        "README.md",
        "LICENSE",
        "completions",
        "cargo-watch",
        "cargo-watch.1",
    }
    assert extracted.get_dir(top_path / "completions") == {"zsh"}
    for name in ("cargo-watch", "cargo-watch.1", "LICENSE", "README.md", "completions/zsh"):
        assert extracted.has_file(top_path / name)
    assert not extracted.has_file(top_path / "completions")
    assert not extracted.has_file(top_path / "asdfcqwe")


@pytest.mark.parametrize("fmt", [PkgFmt.TGZ, PkgFmt.ZIP])
def test_extract_tgz_and_zip(rsps, client, tmp_path, fmt):
    top = "sccache-v0.3.3-x86_64-pc-windows-msvc"
    files = {
        f"{top}/README.md": b"readme",
        f"{top}/LICENSE": b"license",
        f"{top}/sccache.exe": b"MZ",
    }
    body = _tar_bytes(files, mode="w:gz") if fmt is PkgFmt.TGZ else _zip_bytes(files)
    url = f"{BASE}/{top}.{fmt.value}"
    rsps.add(responses.GET, url, body=body)

    extracted = Download(client, url).and_extract(fmt, tmp_path / "dst")

    assert extracted.get_dir(".") == {top}
    assert extracted.get_dir(top) == {"README.md", "LICENSE", "sccache.exe"}
    assert (tmp_path / "dst" / top / "sccache.exe").read_bytes() == b"MZ"


def test_extract_bin(rsps, client, tmp_path):
    url = f"{BASE}/tool"
    rsps.add(responses.GET, url, body=b"binary-data")
    target = tmp_path / "sub" / "tool"

    extracted = Download(client, url).and_extract(PkgFmt.BIN, target)

    assert extracted.has_file("tool")
    assert target.read_bytes() == b"binary-data"


def test_verifier_sees_whole_body_after_extraction(rsps, client, tmp_path):
    body = _tar_bytes({"a": b"x"}) + b"\0" * 200_000
    url = f"{BASE}/padded.tar"
    rsps.add(responses.GET, url, body=body)
    verifier = CollectingVerifier()

    extracted = Download(client, url).with_data_verifier(verifier).and_extract(
        PkgFmt.TAR, tmp_path
    )

    assert extracted.has_file("a")
    assert b"".join(verifier.chunks) == body
    assert verifier.validate() is True


def test_and_visit_tar_reports_entries(rsps, client):
    body = _tar_bytes(
        {"pkg/tool": b"hello"}, dirs=("pkg",), mode="w:bz2", symlinks=[("pkg/link", "tool")]
    )
    url = f"{BASE}/pkg.tbz2"
    rsps.add(responses.GET, url, body=body)
    visitor = RecordingVisitor()

    Download(client, url).and_visit_tar(TarBasedFmt.TBZ2, visitor)

    assert visitor.seen == [
        ("pkg", TarEntryType.DIRECTORY, 0, b""),
        ("pkg/tool", TarEntryType.REGULAR, 5, b"hello"),
        ("pkg/link", TarEntryType.SYMLINK, 0, b""),
    ]


def test_visit_error_still_consumes_stream(rsps, client):
    body = _tar_bytes({"a": b"1", "b": b"2"}) + b"\0" * 200_000
    url = f"{BASE}/stop.tar"
    rsps.add(responses.GET, url, body=body)
    verifier = CollectingVerifier()

    class Stopper(TarEntriesVisitor):
        def visit(self, entry):
            raise DownloadError("stop here")

    with pytest.raises(DownloadError, match="stop here"):
        Download(client, url, verifier).and_visit_tar(TarBasedFmt.TAR, Stopper())
    assert b"".join(verifier.chunks) == body


def test_visit_zstd_from_chunks():
    raw = _tar_bytes({"dir/file.txt": b"zstd content"})
    compressed = zstandard.ZstdCompressor().compress(raw)
    chunks = [compressed[i : i + 7] for i in range(0, len(compressed), 7)]
    visitor = RecordingVisitor()

    extract_tar_based_stream_and_visit(chunks, TarBasedFmt.TZSTD, visitor)

    assert visitor.seen == [("dir/file.txt", TarEntryType.REGULAR, 12, b"zstd content")]


def test_visit_corrupt_stream_raises_download_error():
    with pytest.raises(DownloadError, match="I/O Error"):
        extract_tar_based_stream_and_visit([b"not a gzip file"], TarBasedFmt.TGZ, RecordingVisitor())


def test_into_bytes_updates_verifier(rsps, client):
    url = f"{BASE}/blob"
    rsps.add(responses.GET, url, body=b"payload")
    verifier = CollectingVerifier()

    data = Download(client, url, verifier).into_bytes()

    assert data == b"payload"
    assert verifier.chunks == [b"payload"]


def test_from_response(rsps, client):
    url = f"{BASE}/existing"
    rsps.add(responses.GET, url, body=b"already fetched")
    response = client.get(url).send(True)

    assert Download.from_response(response).into_bytes() == b"already fetched"


def test_http_error_status_is_wrapped(rsps, client, tmp_path):
    url = f"{BASE}/missing.tgz"
    rsps.add(responses.GET, url, status=404)

    with pytest.raises(DownloadError, match="Failed to download from remote") as excinfo:
        Download(client, url).and_extract(PkgFmt.TGZ, tmp_path)
    assert isinstance(excinfo.value.source, HttpError)
    assert excinfo.value.source.is_status()


def test_corrupt_archive_is_wrapped(rsps, client, tmp_path):
    url = f"{BASE}/broken.tgz"
    rsps.add(responses.GET, url, body=b"definitely not gzip")

    with pytest.raises(DownloadError, match="I/O Error"):
        Download(client, url).and_extract(PkgFmt.TGZ, tmp_path / "out")


def test_corrupt_zip_is_wrapped(rsps, client, tmp_path):
    url = f"{BASE}/broken.zip"
    rsps.add(responses.GET, url, body=b"not a zip archive at all")

    with pytest.raises(DownloadError, match="Failed to extract zipfile"):
        Download(client, url).and_extract(PkgFmt.ZIP, tmp_path / "out")


def test_default_verifier_accepts_data():
    verifier = DataVerifier()
    verifier.update(b"anything")
    assert verifier.validate() is True