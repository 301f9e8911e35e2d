"""Record of the files and directories produced by an extraction."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import PurePath

_TOP_LEVEL = PurePath(".")


@dataclass
class ExtractedFilesEntry:
    """A regular file (no children) or a directory with the names it holds."""

    children: set[str] | None = None

    @classmethod
    def file(cls) -> ExtractedFilesEntry:
        return cls(None)

    @classmethod
    def directory(cls, names=()) -> ExtractedFilesEntry:
        return cls(set(names))

    @property
    def is_dir(self) -> bool:
        return self.children is not None


class ExtractedFiles:
    """Maps relative paths to entries; "." is the top-level directory."""

    def __init__(self) -> None:
        self._entries: dict[PurePath, ExtractedFilesEntry] = {}

    @property
    def entries(self) -> dict[PurePath, ExtractedFilesEntry]:
        return dict(self._entries)

    def add_file(self, path: os.PathLike | str) -> None:
        """Record a file; an existing directory entry at `path` is replaced."""
        path = PurePath(path)
        self._entries[path] = ExtractedFilesEntry.file()
        self._add_parents(path)

    def add_dir(self, path: os.PathLike | str) -> None:
        """Record a directory; an existing entry at `path` becomes an empty directory."""
        path = PurePath(path)
        self._add_dir_inner(path, None)
        self._add_parents(path)

    def _add_parents(self, path: PurePath) -> None:
        while path.name:
            parent = path.parent
            self._add_dir_inner(parent, path.name)
            if parent == _TOP_LEVEL:
                break
            path = parent

    def _add_dir_inner(self, path: PurePath, name: str | None) -> None:
        entry = self._entries.get(path)
        if entry is not None and entry.is_dir:
            if name is not None:
                entry.children.add(name)
        else:
            self._entries[path] = ExtractedFilesEntry.directory(
                () if name is None else (name,)
            )

    def get_entry(self, path: os.PathLike | str) -> ExtractedFilesEntry | None:
        return self._entries.get(PurePath(path))

    def get_dir(self, path: os.PathLike | str) -> set[str] | None:
        entry = self.get_entry(path)
        if entry is None or not entry.is_dir:
            return None
        return entry.children

    def has_file(self, path: os.PathLike | str) -> bool:
        entry = self.get_entry(path)
        return entry is not None and not entry.is_dir