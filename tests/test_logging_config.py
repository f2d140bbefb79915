"""JSON log lines: base fields, extra= fields, exceptions, level names."""
import json
import logging
import sys
from pathlib import Path

from app.logging_config import JSONFormatter, setup_logging


def _record(msg="Document ingested", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord("app.test", level, __file__, 1, msg, None, exc_info)
    record.__dict__.update(extra)
    return record


def test_format_is_one_json_line_with_extra_fields():
    line = JSONFormatter().format(_record(document_id="abc", path=Path("/srv/uploads/1.jpg"), skipped=None))
    assert "\n" not in line
    entry = json.loads(line)
    assert entry["level"] == "INFO"
    assert entry["logger"] == "app.test"
    assert entry["message"] == "Document ingested"
    assert entry["document_id"] == "abc"
    assert entry["path"] == "/srv/uploads/1.jpg"
    assert "skipped" not in entry
    assert "lineno" not in entry and "args" not in entry


def test_format_includes_exception():
    try:
        raise OSError("disk full")
    except OSError:
        record = _record("Error copying media reference", logging.WARNING, exc_info=sys.exc_info())
    entry = json.loads(JSONFormatter().format(record))
    assert "OSError: disk full" in entry["exception"]


def test_setup_logging_accepts_level_names():
    root = logging.getLogger()
    saved_level, saved_handlers = root.level, root.handlers[:]
    try:
        setup_logging("warning")
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        setup_logging("not-a-level")
        assert root.level == logging.INFO
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
