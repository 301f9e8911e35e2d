"""Interactive confirmation prompt."""

from __future__ import annotations

import sys
from typing import TextIO

PROMPT = "Do you wish to continue? [yes]/no\n? "

_YES = {"yes", "y", "YES", "Y", ""}
_NO = {"no", "n", "NO", "N"}


class UserAbortError(Exception):
    """The user declined to continue."""

    def __init__(self, message: str = "Installation cancelled by user") -> None:
        super().__init__(message)


def _ask(input_stream: TextIO, output_stream: TextIO) -> bool:
    while True:
        try:
            output_stream.write(PROMPT)
            output_stream.flush()
            answer = input_stream.readline().strip()
        except OSError:
            return False
        if answer in _YES:
            return True
        if answer in _NO:
            return False


def confirm(input_stream: TextIO | None = None, output_stream: TextIO | None = None) -> None:
    """Ask until a yes/no answer is given; raise UserAbortError on "no".

    An empty answer, including end of input, counts as yes.
    """
    if not _ask(input_stream or sys.stdin, output_stream or sys.stdout):
        raise UserAbortError()