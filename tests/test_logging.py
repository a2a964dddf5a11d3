import json
import logging

from core.logging import LOGGER_NAME, JsonFormatter, logger


def test_shared_logger_is_configured():
    assert logger.name == LOGGER_NAME
    assert not logger.propagate
    assert len(logger.handlers) == 2


def test_json_formatter_includes_provider():
    record = logging.LogRecord(LOGGER_NAME, logging.WARNING, __file__, 1, "gemini failed: %s", ("503",), None)
    record.provider = "gemini (flash)"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["message"] == "gemini failed: 503"
    assert payload["provider"] == "gemini (flash)"
