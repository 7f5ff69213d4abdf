import json
import logging

from function_clarity.utils.json_logging import JSONFormatter, configure_logging


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("function_clarity.engine", logging.INFO, __file__, 10, "cycle %s", ("done",), None)
    record.cycle_id = "c1"
    record.function_identity = "arn:aws:lambda:us-east-1:1:function:f"
    data = json.loads(JSONFormatter().format(record))
    assert data["msg"] == "cycle done"
    assert data["level"] == "INFO"
    assert data["cycle_id"] == "c1"
    assert data["function_identity"].endswith(":f")


def test_configure_logging_level_from_env(monkeypatch):
    logger = logging.getLogger("function_clarity")
    monkeypatch.setattr(logger, "handlers", [])
    monkeypatch.setattr(logger, "level", logger.level)
    configured = configure_logging({"FUNCTION_CLARITY_LOG_LEVEL": "debug", "FUNCTION_CLARITY_LOG_JSON": "false"})
    assert configured.level == logging.DEBUG
    assert len(configured.handlers) == 1
    assert not isinstance(configured.handlers[0].formatter, JSONFormatter)
