"""Tests for helpers shared by both codecs."""

import pytest

from protobridge.codecs.common import (
    ANTHROPIC_STOP_REASONS,
    OPENAI_FINISH_REASONS,
    anthropic_stop_reason,
    budget_to_effort,
    clean_schema,
    effort_to_budget,
    openai_stop_reason,
    parse_error_body,
    parse_model_with_effort,
    parse_tool_arguments,
    to_anthropic_id,
    to_openai_id,
)
from protobridge.schema import StopReason


class TestStopReasons:
    @pytest.mark.parametrize("reason", list(StopReason))
    def test_every_reason_has_a_wire_value(self, reason):
        assert reason in ANTHROPIC_STOP_REASONS
        assert reason in OPENAI_FINISH_REASONS

    def test_openai_mapping(self):
        assert openai_stop_reason("length") is StopReason.MAX_TOKENS
        assert openai_stop_reason("tool_calls") is StopReason.TOOL_USE
        assert openai_stop_reason("content_filter") is StopReason.ERROR
        assert openai_stop_reason(None) is StopReason.END_TURN

    def test_anthropic_mapping(self):
        assert anthropic_stop_reason("stop_sequence") is StopReason.STOP_SEQUENCE
        assert anthropic_stop_reason("pause_turn") is StopReason.END_TURN
        assert anthropic_stop_reason("something_new") is StopReason.END_TURN


class TestIds:
    def test_anthropic_ids(self):
        assert to_anthropic_id("chatcmpl-123") == "msg_123"
        assert to_anthropic_id("msg_1") == "msg_1"
        assert to_anthropic_id(None).startswith("msg_")

    def test_openai_ids(self):
        assert to_openai_id("msg_123") == "chatcmpl-123"
        assert to_openai_id("gen-9") == "chatcmpl-gen-9"
        assert to_openai_id("").startswith("chatcmpl-")


class TestReasoningEffort:
    def test_parse_model_with_effort(self):
        assert parse_model_with_effort("gpt-5.1-codex-high") == ("gpt-5.1-codex", "high")
        assert parse_model_with_effort("o3-mini-low") == ("o3-mini", "low")
        assert parse_model_with_effort("gpt-4o") == ("gpt-4o", None)
        assert parse_model_with_effort("-high") == ("-high", None)

    def test_effort_to_budget(self):
        assert effort_to_budget("low", 4096) == 2048
        assert effort_to_budget("high", 4096) is None
        assert effort_to_budget("turbo", 4096) is None
        assert effort_to_budget(None, 4096) is None

    def test_budget_to_effort(self):
        assert budget_to_effort(1024) == "low"
        assert budget_to_effort(5000) == "medium"
        assert budget_to_effort(32000) == "high"
        assert budget_to_effort(0) is None


def test_clean_schema_recurses():
    schema = {
        "type": "object",
        "properties": {
            "links": {"type": "array", "items": {"type": "string", "format": "uri"}},
            "when": {"type": "string", "format": "date-time"},
        },
    }
    cleaned = clean_schema(schema)
    assert cleaned["properties"]["links"]["items"] == {"type": "string"}
    assert cleaned["properties"]["when"]["format"] == "date-time"
    assert schema["properties"]["links"]["items"]["format"] == "uri"


def test_parse_tool_arguments_wraps_invalid_json():
    assert parse_tool_arguments('{"a": 1}') == {"a": 1}
    assert parse_tool_arguments("") == {}
    assert parse_tool_arguments("{broken") == {"raw": "{broken"}


@pytest.mark.parametrize(
    "body, expected",
    [
        (b'{"error": {"message": "bad", "type": "invalid_request_error"}}', ("bad", "invalid_request_error")),
        (b'{"type": "error", "error": {"type": "overloaded_error", "message": "busy"}}', ("busy", "overloaded_error")),
        (b'{"error": "plain"}', ("plain", None)),
        (b"<html>Bad Gateway</html>", ("<html>Bad Gateway</html>", None)),
    ],
)
def test_parse_error_body(body, expected):
    assert parse_error_body(body) == expected
