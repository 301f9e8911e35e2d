"""Locate binaries inside an extracted package and install them."""

from __future__ import annotations

import logging
import os
import re
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePath

from .atomic_install import (
    atomic_install,
    atomic_install_noclobber,
    atomic_symlink_file,
    atomic_symlink_file_noclobber,
)
from .extract import PkgFmt

log = logging.getLogger(__name__)

DEFAULT_BIN_DIR_TEMPLATE = "{ bin }{ binary-ext }"


class BinError(Exception):
    """Base class for binary discovery and installation errors."""


class EmptySourceFilePathError(BinError):
    def __init__(self) -> None:
        super().__init__("bin-dir configuration provided generates empty source path")


class InvalidSourceFilePathError(BinError):
    def __init__(self, path: PurePath) -> None:
        self.path = path
        super().__init__(
            "bin-dir configuration provided generates source path outside of the "
            f"temporary dir: {path}"
        )


class BinFileNotFoundError(BinError):
    def __init__(self, path: PurePath) -> None:
        self.path = path
        super().__init__(f"bin file {path} not found")


class TemplateRenderError(BinError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to render template: {reason}")


def normalize_path(path: os.PathLike | str) -> PurePath:
    """Drop `.` components and resolve `..` lexically, never above the anchor."""
    path = PurePath(path)
    anchor = path.anchor
    parts = path.parts[1:] if anchor else path.parts
    stack: list[str] = []
    for part in parts:
        if part == "..":
            if stack:
                stack.pop()
        elif part != ".":
            stack.append(part)
    return PurePath(anchor, *stack) if anchor else PurePath(*stack)


def is_valid_path(path: os.PathLike | str) -> bool:
    """True if a normalized path does not start with a root or drive."""
    return not PurePath(path).anchor


_TEMPLATE_PART = re.compile(r"\\([{}])|\{([^{}]*)\}|([{}])|(\\|[^\\{}]+)")


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute `{ key }` placeholders; `\\{` and `\\}` are literal braces."""
    pieces = []
    for match in _TEMPLATE_PART.finditer(template):
        escaped, key, stray, text = match.groups()
        if escaped is not None:
            pieces.append(escaped)
        elif key is not None:
            key = key.strip()
            if not key:
                raise TemplateRenderError(f"empty key at position {match.start()}")
            value = values.get(key)
            if value is None:
                raise TemplateRenderError(f"missing key `{key}`")
            pieces.append(value)
        elif stray is not None:
            raise TemplateRenderError(f"unbalanced `{stray}` at position {match.start()}")
        else:
            pieces.append(text)
    return "".join(pieces)


@dataclass
class Data:
    """What is needed to work out binary paths for one package."""

    name: str
    target: str
    version: str
    bin_path: Path
    install_path: Path
    repo: str | None = None
    pkg_fmt: PkgFmt | None = None
    # Extra keys such as target_family, target_arch, target_libc, target_vendor.
    target_related_info: Mapping[str, str] = field(default_factory=dict)


def infer_bin_dir_template(data: Data, has_dir: Callable[[PurePath], bool]) -> str:
    """Guess the bin-dir template from the directories present after extraction."""
    name, target, version = data.name, data.target, data.version
    candidates = (
        f"{name}-{target}-v{version}",
        f"{name}-{target}-{version}",
        f"{name}-{version}-{target}",
        f"{name}-v{version}-{target}",
        f"{name}-{target}",
        f"{name}-{version}",
        f"{name}-v{version}",
        name,
    )
    found = next((d for d in candidates if has_dir(PurePath(d))), None)
    if found is None:
        return DEFAULT_BIN_DIR_TEMPLATE
    return f"{found}/{DEFAULT_BIN_DIR_TEMPLATE}"


@dataclass
class BinFile:
    """One binary: where it is in the package and where it gets installed."""

    base_name: str
    source: Path
    archive_source_path: PurePath
    dest: Path
    link: Path | None

    @classmethod
    def create(cls, data: Data, base_name: str, template: str, no_symlinks: bool) -> BinFile:
        """Build paths for `base_name` using the bin-dir `template`."""
        binary_ext = ".exe" if "windows" in data.target else ""

        context: dict[str, str] = dict(data.target_related_info)
        context.update(
            {
                "name": data.name,
                "target": data.target,
                "version": data.version,
                "bin": base_name,
                "binary-ext": binary_ext,
                # Soft-deprecated alias for binary-ext.
                "format": binary_ext,
            }
        )
        if data.repo is not None:
            context["repo"] = data.repo
        else:
            context.pop("repo", None)

        bin_path = Path(data.bin_path)
        install_path = Path(data.install_path)

        if data.pkg_fmt is PkgFmt.BIN:
            source = bin_path
            archive_source_path = PurePath(bin_path.name)
        else:
            normalized = normalize_path(render_template(template, context))
            if not normalized.parts:
                raise EmptySourceFilePathError()
            if not is_valid_path(normalized):
                raise InvalidSourceFilePathError(normalized)
            source = bin_path / normalized
            archive_source_path = normalized

        dest = install_path / base_name
        if binary_ext:
            dest = dest.with_suffix(binary_ext)

        if no_symlinks:
            link = None
        else:
            link = dest
            dest = install_path / f"{base_name}-v{data.version}{binary_ext}"

        return cls(
            base_name=f"{base_name}{binary_ext}",
            source=source,
            archive_source_path=archive_source_path,
            dest=dest,
            link=link,
        )

    def preview_bin(self) -> str:
        return f"{self.base_name} => {self.dest}"

    def preview_link(self) -> str:
        if self.link is None:
            return ""
        return f"{self.base_name} ({self.link} -> {self._link_dest()})"

    def check_source_exists(self, has_file: Callable[[PurePath], bool]) -> None:
        """Raise BinFileNotFoundError unless `has_file` knows the archive path."""
        if not has_file(self.archive_source_path):
            raise BinFileNotFoundError(self.source)

    def _pre_install_bin(self) -> None:
        if not self.source.exists():
            raise BinFileNotFoundError(self.source)
        if os.name == "posix":
            os.chmod(self.source, 0o755)

    def install_bin(self) -> None:
        self._pre_install_bin()
        log.debug("Atomically install file from '%s' to '%s'", self.source, self.dest)
        atomic_install(self.source, self.dest)

    def install_bin_noclobber(self) -> None:
        self._pre_install_bin()
        log.debug(
            "Installing file from '%s' to '%s' only if dst not exists", self.source, self.dest
        )
        atomic_install_noclobber(self.source, self.dest)

    def install_link(self) -> None:
        if self.link is not None:
            dest = self._link_dest()
            log.debug("Create link '%s' pointing to '%s'", self.link, dest)
            atomic_symlink_file(dest, self.link)

    def install_link_noclobber(self) -> None:
        if self.link is not None:
            dest = self._link_dest()
            log.debug(
                "Create link '%s' pointing to '%s' only if dst not exists", self.link, dest
            )
            atomic_symlink_file_noclobber(dest, self.link)

    def _link_dest(self) -> Path:
        if sys.platform != "win32":
            return Path(self.dest.name)
        return self.dest