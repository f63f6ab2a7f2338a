"""Tests for structured log formatting."""

import logging

import orjson

from utils.logging import JsonFormatter, TextFormatter, setup_logging


def make_record(**extra):
    record = logging.LogRecord("apps.ingestor.worker", logging.INFO, __file__, 1, "Page %s ingested", (3,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_includes_extra_fields():
    line = JsonFormatter().format(make_record(inserted=500, cursor=None))
    payload = orjson.loads(line)
    assert payload["message"] == "Page 3 ingested"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "apps.ingestor.worker"
    assert payload["inserted"] == 500
    assert payload["cursor"] is None
    assert "args" not in payload


def test_json_handles_unserializable_values():
    payload = orjson.loads(JsonFormatter().format(make_record(obj=object())))
    assert payload["obj"].startswith("<object object")


def test_text_appends_extra():
    line = TextFormatter().format(make_record(page=3))
    assert " - apps.ingestor.worker - INFO - Page 3 ingested" in line
    assert line.endswith('{"page":3}')


def test_setup_logging_installs_handler(monkeypatch):
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    monkeypatch.setattr(logging.getLogger("httpx"), "level", logging.NOTSET)

    setup_logging(level="debug", format_type="text")

    assert captured["level"] == logging.DEBUG
    assert captured["force"] is True
    assert isinstance(captured["handlers"][0].formatter, TextFormatter)
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_defaults_to_json(monkeypatch):
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    setup_logging(level="bogus")

    assert captured["level"] == logging.INFO
    assert isinstance(captured["handlers"][0].formatter, JsonFormatter)
