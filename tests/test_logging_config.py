import json
import logging

from homeops.logging_config import JSONFormatter, LoggerAdapter, get_logger, message_context
from homeops.schemas.wecom import IncomingMessage


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("homeops.router", logging.WARNING, __file__, 1, "Sender not in allow-list", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_plain_record(self):
        data = json.loads(JSONFormatter().format(make_record()))
        assert data["level"] == "WARNING"
        assert data["logger"] == "homeops.router"
        assert data["message"] == "Sender not in allow-list"
        assert "context" not in data

    def test_context_is_included(self):
        data = json.loads(JSONFormatter().format(make_record(context={"user_id": "u1", "at": 1.5})))
        assert data["context"] == {"user_id": "u1", "at": 1.5}

    def test_thread_name_is_included(self):
        data = json.loads(JSONFormatter().format(make_record()))
        assert data["thread"] == "MainThread"


class TestLoggerAdapter:
    def test_merges_fixed_and_call_context(self):
        adapter = LoggerAdapter(get_logger("router"), {"user_id": "u1"})
        msg, kwargs = adapter.process("hello", {"context": {"event_key": "a.b"}})
        assert msg == "hello"
        assert kwargs["extra"] == {"context": {"user_id": "u1", "event_key": "a.b"}}

    def test_get_logger_namespace(self):
        assert get_logger("main").name == "homeops.main"


class TestMessageContext:
    def test_keeps_identifying_fields(self):
        msg = IncomingMessage(from_user_name=" u1 ", msg_type="event", event="click", event_key="core.menu", msg_id="7")
        assert message_context(msg) == {
            "user_id": "u1",
            "msg_type": "event",
            "event": "click",
            "event_key": "core.menu",
            "msg_id": "7",
        }

    def test_empty_message(self):
        assert message_context(IncomingMessage()) == {}
