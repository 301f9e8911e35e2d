import io
import json
import logging

import pytest

from binstallkit.logsetup import TRACE, ErrorFreeStream, JsonFormatter, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


class BrokenStream:
    def write(self, data):
        raise OSError("boom")

    def flush(self):
        raise OSError("boom")


def test_error_free_stream_writes_through():
    target = io.StringIO()
    stream = ErrorFreeStream(target)
    assert stream.write("abc") == 3
    assert target.getvalue() == "abc"


def test_error_free_stream_reports_failures():
    errors = io.StringIO()
    stream = ErrorFreeStream(BrokenStream(), errors)
    assert stream.write("abcd") == 4
    stream.flush()
    assert errors.getvalue().count("Failed to write to stdout: boom") == 2


def test_json_formatter_fields():
    record = logging.LogRecord("binstallkit.x", logging.WARNING, __file__, 1, "hello %s", ("you",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARN"
    assert payload["fields"] == {"message": "hello you"}
    assert payload["target"] == "binstallkit.x"
    assert payload["timestamp"].endswith("Z")


def test_text_output_filters_by_level_and_target(root_logger, capsys):
    setup_logging("info", False)
    logging.getLogger("binstallkit.demo").info("shown message")
    logging.getLogger("binstallkit.demo").debug("hidden debug")
    logging.getLogger("otherlib").info("hidden other")
    out = capsys.readouterr().out
    assert " INFO shown message" in out
    assert "hidden" not in out


def test_trace_level_lets_other_targets_through(root_logger, capsys):
    setup_logging("trace", False)
    logging.getLogger("otherlib").log(TRACE, "deep detail")
    out = capsys.readouterr().out
    assert "TRACE deep detail" in out


def test_json_output(root_logger, capsys):
    setup_logging("debug", True)
    logging.getLogger("binstallkit.demo").debug("structured")
    line = capsys.readouterr().out.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["fields"]["message"] == "structured"
    assert payload["level"] == "DEBUG"


def test_off_silences_everything(root_logger, capsys):
    setup_logging("off", False)
    logging.getLogger("binstallkit.demo").error("should not appear")
    assert "should not appear" not in capsys.readouterr().out


def test_setup_twice_keeps_one_handler(root_logger):
    setup_logging("info", False)
    handler = setup_logging("debug", False)
    assert sum(type(h) is type(handler) for h in root_logger.handlers) == 1
    assert handler in root_logger.handlers


def test_unknown_level_rejected(root_logger):
    with pytest.raises(ValueError):
        setup_logging("loud", False)