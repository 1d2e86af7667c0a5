import json
import logging

from socialgraph.obs import logging as obs_logging
from socialgraph.settings import settings


def _record(msg: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("socialgraph.test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_context():
    tokens = obs_logging.bind_context(request_id="req-1", user_id="user-9", action="follow")
    try:
        line = obs_logging.JSONLogFormatter().format(_record("relationship quota exhausted", actor="user-9"))
    finally:
        obs_logging.reset_context(tokens)

    payload = json.loads(line)
    assert payload["msg"] == "relationship quota exhausted"
    assert payload["level"] == "info"
    assert payload["service"] == settings.service_name
    assert payload["request_id"] == "req-1"
    assert payload["action"] == "follow"
    assert payload["actor"] == "user-9"


def test_formatter_redacts_request_messages_and_truncates():
    line = obs_logging.JSONLogFormatter().format(
        _record("stored", request_message="hello there friend", note="x" * 400)
    )
    payload = json.loads(line)
    assert payload["request_message"] == "[redacted]"
    assert len(payload["note"]) == 257
    assert "request_id" not in payload


def test_sampling_filter_keeps_warnings(monkeypatch):
    monkeypatch.setattr(settings, "obs_log_sampling_rate_info", 0.0)
    sampler = obs_logging.InfoSamplingFilter()
    assert not sampler.filter(_record("noisy"))
    assert sampler.filter(_record("rapid relationship actions detected", level=logging.WARNING))
