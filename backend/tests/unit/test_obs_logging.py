import json
import logging

from nearby.obs.logging import InfoSamplingFilter, JSONLogFormatter, current_context, log_context


def _record(level=logging.INFO, **extra):
    record = logging.LogRecord("nearby.test", level, __file__, 1, "feed %s", ("page",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_merges_context_and_scrubs_fields():
    formatter = JSONLogFormatter()
    with log_context(request_id="req-1", user_id="U1"):
        line = formatter.format(_record(access_token="abc", lat=43.651234, note="x" * 300, ids=list(range(12))))
    payload = json.loads(line)

    assert payload["msg"] == "feed page"
    assert payload["level"] == "info"
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "U1"
    assert payload["access_token"] == "[redacted]"
    assert payload["lat"] == 43.65
    assert len(payload["note"]) == 259
    assert payload["ids"][-1] == "+2 more"
    assert "args" not in payload


def test_log_context_unwinds():
    with log_context(request_id="outer"):
        with log_context(activity_id="A", user_id=None):
            assert current_context() == {"request_id": "outer", "activity_id": "A"}
        assert current_context() == {"request_id": "outer"}
    assert current_context() == {}


def test_sampling_only_drops_info():
    silent = InfoSamplingFilter(rate=0.0)
    assert silent.filter(_record(logging.INFO)) is False
    assert silent.filter(_record(logging.WARNING)) is True
    assert InfoSamplingFilter(rate=1.0).filter(_record(logging.INFO)) is True
