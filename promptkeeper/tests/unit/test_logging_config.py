import json
import logging

from promptkeeper.logging_config import HISTORY_LOGGER_NAME, JSONFormatter, build_logging_config


def test_console_only_without_log_dir():
    cfg = build_logging_config(log_dir="", log_level="INFO")
    assert cfg["root"]["handlers"] == ["console"]
    assert "file" not in cfg["handlers"]
    assert HISTORY_LOGGER_NAME not in cfg["loggers"]


def test_log_dir_adds_file_and_history_handlers(tmp_path):
    cfg = build_logging_config(log_dir=str(tmp_path), log_level="DEBUG")
    assert "file" in cfg["root"]["handlers"]
    assert cfg["root"]["level"] == "DEBUG"
    assert cfg["handlers"]["history_file"]["formatter"] == "json"
    assert cfg["handlers"]["history_file"]["filename"].startswith(str(tmp_path))
    assert cfg["loggers"][HISTORY_LOGGER_NAME]["propagate"] is False


def test_build_does_not_mutate_base_config(tmp_path):
    build_logging_config(log_dir=str(tmp_path))
    assert build_logging_config(log_dir="")["root"]["handlers"] == ["console"]


def test_json_formatter_merges_dict_messages():
    record = logging.LogRecord(
        name=HISTORY_LOGGER_NAME,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg={"event": "prompt_history", "operation": "create"},
        args=None,
        exc_info=None,
    )
    payload = json.loads(JSONFormatter().format(record))
    assert payload["event"] == "prompt_history"
    assert payload["operation"] == "create"
    assert payload["level"] == "INFO"
    assert payload["timestamp"].endswith("Z")


def test_json_formatter_plain_message():
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "hello %s", ("there",), None)
    payload = json.loads(JSONFormatter().format(record))
    assert payload["message"] == "hello there"
