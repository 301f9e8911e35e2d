import io

import pytest

from binstallkit.ui import PROMPT, UserAbortError, confirm


@pytest.mark.parametrize("answer", ["yes\n", "y\n", "YES\n", "Y\n", "\n", "  y  \n"])
def test_affirmative_answers(answer):
    out = io.StringIO()
    assert confirm(io.StringIO(answer), out) is None
    assert out.getvalue() == PROMPT


@pytest.mark.parametrize("answer", ["no\n", "n\n", "NO\n", " N \n"])
def test_negative_answers(answer):
    with pytest.raises(UserAbortError):
        confirm(io.StringIO(answer), io.StringIO())


def test_reprompts_on_invalid_answer():
    out = io.StringIO()
    confirm(io.StringIO("maybe\nperhaps\nyes\n"), out)
    assert out.getvalue() == PROMPT * 3


def test_end_of_input_counts_as_yes():
    out = io.StringIO()
    assert confirm(io.StringIO(""), out) is None
    assert out.getvalue() == "Do you wish to continue? [yes]/no\n? "


class _BrokenInput(io.StringIO):
    def readline(self, *args):
        raise OSError("closed")


def test_read_error_aborts():
    with pytest.raises(UserAbortError):
        confirm(_BrokenInput(), io.StringIO())