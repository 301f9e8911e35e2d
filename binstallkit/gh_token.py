"""Discover a GitHub token from the `gh` CLI or git credential helpers."""

from __future__ import annotations

import subprocess
from collections.abc import Sequence

_GIT_CREDENTIAL_QUERY = b"host=github.com\nprotocol=https"


def run_for_stdout(args: Sequence[str], input_data: bytes | None = None) -> str:
    """Run a command, optionally feeding stdin, and return its stripped stdout.

    Raises OSError if the command cannot start, exits unsuccessfully or
    prints something that is not UTF-8.
    """
    kwargs = {"input": input_data} if input_data is not None else {"stdin": subprocess.DEVNULL}
    completed = subprocess.run(
        list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        check=False,
        **kwargs,
    )

    if completed.returncode != 0:
        raise OSError(f"`{list(args)}` process exited with `{completed.returncode}`")

    try:
        text = completed.stdout.decode("utf-8")
    except UnicodeDecodeError as err:
        raise OSError(f"Invalid output for `{list(args)}`, expected utf8: {err}") from None

    return text.strip()


def get_token() -> str:
    """Return a token from `gh auth token`, else from `git credential fill`."""
    gh_output = run_for_stdout(["gh", "auth", "token"])
    if gh_output:
        return gh_output

    output = run_for_stdout(["git", "credential", "fill"], _GIT_CREDENTIAL_QUERY)
    for line in output.splitlines():
        field_name, sep, value = line.strip().partition("=")
        if sep and field_name == "password":
            return value

    raise OSError("Password not found in `git credential fill` output")