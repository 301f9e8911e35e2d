"""Work out where cargo roots live and where binaries get installed."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def get_cargo_roots_path(
    cargo_roots: os.PathLike | str | None,
    cargo_home: os.PathLike | str,
    config_install_root: os.PathLike | str | None = None,
) -> Path:
    """Pick the cargo root: explicit value, CARGO_INSTALL_ROOT, config, then cargo home."""
    if cargo_roots is not None:
        return Path(cargo_roots)

    env_root = os.environ.get("CARGO_INSTALL_ROOT")
    if env_root is not None:
        log.debug("using CARGO_INSTALL_ROOT (%s)", env_root)
        return Path(env_root)

    if config_install_root is not None:
        log.debug("using `install.root` %s from cargo config", config_install_root)
        return Path(config_install_root)

    log.debug("using (%s) as cargo home", cargo_home)
    return Path(cargo_home)


def _executable_dir() -> Path | None:
    if sys.platform == "darwin" or sys.platform.startswith("win"):
        return None
    xdg_bin = os.environ.get("XDG_BIN_HOME")
    if xdg_bin and Path(xdg_bin).is_absolute():
        return Path(xdg_bin)
    try:
        home = Path.home()
    except RuntimeError:
        return None
    return home / ".local" / "bin"


def get_install_path(
    install_path: os.PathLike | str | None,
    cargo_roots: os.PathLike | str | None,
) -> tuple[Path | None, bool]:
    """Return (install_path, is_custom_install_path)."""
    if install_path is not None:
        return Path(install_path), True

    if cargo_roots is not None:
        return Path(cargo_roots) / "bin", False

    directory = _executable_dir()
    if directory is not None:
        log.debug("Fallback to %s", directory)
    return directory, True