# binstallkit

Building blocks for fetching prebuilt binaries from release pages and installing
them safely.

## What it provides

- **Atomic installation** (`binstallkit.atomic_install`): `atomic_install`,
  `atomic_install_noclobber`, `atomic_symlink_file` and
  `atomic_symlink_file_noclobber`. The plain variants replace the destination
  atomically; the `_noclobber` variants fail if the destination already exists.
- **HTTP client** (`binstallkit.remote`): `Client` sends requests over https
  only. It retries up to three times on timeouts, connection errors, 429, 503,
  408 and 504 responses, and on responses carrying `Retry-After` or
  `x-ratelimit-remaining: 0`. After such a response, further requests to the
  same host are held back. All requests also pass through a client-side
  throttle of `num_request` requests per `per_millis` milliseconds
  (`binstallkit.ratelimit`). `Client.get_redirected_final_url` uses HEAD and
  falls back to GET when HEAD is refused. Extra root certificates and a minimum
  TLS version come from `binstallkit.tls`.
- **Downloading** (`binstallkit.download`): `Download.and_extract` streams an
  archive straight to disk. `Download.and_visit_tar` hands each entry of a
  tarball to a `TarEntriesVisitor` in memory. `Download.into_bytes` returns the
  whole body. A `DataVerifier` may be attached to see every downloaded chunk.
  Failures are raised as `DownloadError`.
- **Extraction** (`binstallkit.extract`): handles tar, tar.gz, tar.bz2, tar.xz,
  tar.zst (`TarBasedFmt`), zip and bare binaries (`PkgFmt`). It returns an
  `ExtractedFiles` index (`binstallkit.extracted_files`) of the files and
  directories it wrote. Tar entries containing `..` are skipped, and so are
  zip symlinks whose target contains `..`.
- **Binary discovery** (`binstallkit.bins`): `infer_bin_dir_template` guesses
  where the binary sits inside an archive. `BinFile.create` renders a bin-dir
  template such as `{ bin }{ binary-ext }` to find the binary in the package.
  It also works out the versioned destination and the symlink. `BinFile` then
  installs both.
- **Helpers**:
  - `install_path.get_cargo_roots_path` picks a cargo root from an explicit
    value, `CARGO_INSTALL_ROOT`, a configured root, or cargo home.
    `install_path.get_install_path` derives the install directory from it.
  - `ui.confirm` asks a yes/no question and raises `UserAbortError` on "no".
  - `gh_token.get_token` reads a GitHub token from `gh auth token` or
    `git credential fill`.
  - `logsetup.setup_logging` sets up plain-text or JSON logging to stdout.

## Installation

```
pip install binstallkit
```

## Example

```python
import tempfile
from pathlib import Path

from binstallkit.remote import Client
from binstallkit.download import Download
from binstallkit.extract import PkgFmt

client = Client("my-installer/1.0")
response = client.get("https://downloads.example.com/tool-x86_64.tar.gz").send(True)

with tempfile.TemporaryDirectory() as tmp:
    files = Download.from_response(response).and_extract(PkgFmt.TGZ, Path(tmp))
    print(files.has_file(Path("tool")))
    print(files.get_dir(Path(".")))
```

Installing an extracted binary with a versioned name and a symlink:

```python
from pathlib import Path
from binstallkit.bins import Data, BinFile, infer_bin_dir_template

data = Data(
    name="tool",
    target="x86_64-unknown-linux-gnu",
    version="1.2.3",
    bin_path=Path("/tmp/extracted"),
    install_path=Path.home() / ".local" / "bin",
)
template = infer_bin_dir_template(data, lambda p: (data.bin_path / p).is_dir())
bin_file = BinFile.create(data, "tool", template, no_symlinks=False)
print(bin_file.preview_bin())
bin_file.install_bin()
bin_file.install_link()
```

## What it does not do

This is a library of parts, not a complete installer. It has no command-line
tool. It does not look packages up in a registry and does not choose release
URLs. It does not track installed versions in a manifest and does not build
from source. You supply the URL, the package format and the bin-dir template.

## Running the tests

```
pip install -e ".[test]"
pytest
```