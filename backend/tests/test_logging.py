import json
import logging

from backend.app.core.logging import (
    JSONFormatter,
    bind_context,
    get_logger,
    provider_id_var,
    request_id_var,
    user_id_var,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("backend.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_context():
    with bind_context(request_id_var, "req-1"), bind_context(user_id_var, 7), bind_context(provider_id_var, "cfg-1"):
        line = json.loads(JSONFormatter().format(_record(extra_data={"kind": "ollama"})))

    assert line["msg"] == "hello"
    assert line["level"] == "INFO"
    assert line["request_id"] == "req-1"
    assert line["user_id"] == "7"
    assert line["provider_id"] == "cfg-1"
    assert line["data"] == {"kind": "ollama"}


def test_bind_context_resets():
    with bind_context(provider_id_var, "cfg-1"):
        assert provider_id_var.get() == "cfg-1"
    assert provider_id_var.get() is None


def test_context_logger_data_keyword(caplog):
    logger = get_logger("backend.test")
    with caplog.at_level(logging.INFO, logger="backend.test"):
        logger.info("Dispatching", data={"kind": "ollama"})
    assert caplog.records[-1].extra_data == {"kind": "ollama"}
