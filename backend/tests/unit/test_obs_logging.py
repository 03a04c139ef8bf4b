import json
import logging

from dsync.obs import logging as obs_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("dsync.test", logging.INFO, __file__, 1, "message sent", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_redacts_sensitive_fields_and_binds_context():
    tokens = obs_logging.bind_context(request_id="req-1", user_id="user-a")
    try:
        line = obs_logging.JSONLogFormatter().format(
            _record(chat_id="chat-1", content="secret text", token="abc")
        )
    finally:
        obs_logging.reset_context(tokens)

    payload = json.loads(line)
    assert payload["msg"] == "message sent"
    assert payload["level"] == "info"
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "user-a"
    assert payload["chat_id"] == "chat-1"
    assert payload["content"] == "[redacted]"
    assert payload["token"] == "[redacted]"
    assert obs_logging.current_request_id() is None


def test_formatter_truncates_long_values():
    payload = json.loads(obs_logging.JSONLogFormatter().format(_record(note="x" * 400, ids=list(range(20)))))

    assert payload["note"].endswith("…")
    assert len(payload["ids"]) == 11
