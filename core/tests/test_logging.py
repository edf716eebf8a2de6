"""Tests for structured logging and trace context propagation."""

import json
import logging

import pytest

from flowengine.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)


@pytest.fixture(autouse=True)
def clean_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


def _record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("flowengine.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestTraceContext:
    def test_set_merges(self):
        set_trace_context(request_id="r1", flow_id="f1")
        set_trace_context(node_id="n1")
        assert get_trace_context() == {"request_id": "r1", "flow_id": "f1", "node_id": "n1"}

    def test_get_returns_copy(self):
        set_trace_context(request_id="r1")
        get_trace_context()["request_id"] = "changed"
        assert get_trace_context()["request_id"] == "r1"

    def test_empty_when_unset(self):
        assert get_trace_context() == {}


class TestStructuredFormatter:
    def test_includes_trace_context_and_extra_fields(self):
        set_trace_context(request_id="r1", flow_id="chat", node_id="llm")
        entry = json.loads(StructuredFormatter().format(_record(latency_ms=12, model="gpt-4o")))

        assert entry["message"] == "hello"
        assert entry["level"] == "info"
        assert entry["logger"] == "flowengine.test"
        assert entry["request_id"] == "r1"
        assert entry["node_id"] == "llm"
        assert entry["latency_ms"] == 12
        assert entry["model"] == "gpt-4o"

    def test_strips_ansi_codes(self):
        entry = json.loads(StructuredFormatter().format(_record("\033[31mred\033[0m")))
        assert entry["message"] == "red"


class TestHumanReadableFormatter:
    def test_prefix(self):
        set_trace_context(request_id="0123456789abcdef", flow_id="chat")
        output = HumanReadableFormatter().format(_record(node_id="llm"))
        assert "[req:01234567 | flow:chat | node:llm] hello" in output

    def test_no_prefix_without_context(self):
        output = HumanReadableFormatter().format(_record())
        assert output.endswith(" hello")
        assert "req:" not in output


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_root(self, monkeypatch):
        # json mode exports color switches for third-party libraries
        monkeypatch.setenv("NO_COLOR", "")
        monkeypatch.setenv("FORCE_COLOR", "")
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_format(self):
        configure_logging(level="debug", format="json")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_auto_uses_env(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging(format="auto")
        assert isinstance(logging.getLogger().handlers[0].formatter, StructuredFormatter)

    def test_auto_defaults_to_human(self, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.delenv("ENV", raising=False)
        configure_logging(format="auto")
        assert isinstance(logging.getLogger().handlers[0].formatter, HumanReadableFormatter)
