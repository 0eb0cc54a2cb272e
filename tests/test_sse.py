"""Tests for the SSE module."""

from protobridge.core.sse import SSEDecoder, detect_sse_stream_error, format_sse_event


class TestDetectSseStreamError:
    """Tests for SSE stream error detection."""

    def test_returns_none_for_empty_data(self):
        assert detect_sse_stream_error(b"") is None

    def test_returns_none_for_non_json_data(self):
        assert detect_sse_stream_error(b"just some text") is None

    def test_returns_none_for_done_signal(self):
        assert detect_sse_stream_error(b"data: [DONE]") is None

    def test_detects_anthropic_style_error(self):
        """Test that an Anthropic error frame is reported with its type."""
        data = b'event: error\ndata: {"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}\n\n'
        result = detect_sse_stream_error(data)
        assert result is not None
        assert "Overloaded" in result
        assert "overloaded_error" in result

    def test_detects_openai_style_error(self):
        result = detect_sse_stream_error(b'data: {"error":{"message":"boom","type":"server_error"}}\n\n')
        assert result is not None
        assert "boom" in result


class TestSSEDecoder:
    """Tests for incremental SSE frame splitting."""

    def test_frame_split_across_chunks(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"event: ping\nda") == []
        assert decoder.feed(b'ta: {"type":') == []
        events = decoder.feed(b'"ping"}\n\n')
        assert len(events) == 1
        assert events[0].event == "ping"
        assert events[0].json() == {"type": "ping"}

    def test_multiple_frames_in_one_chunk(self):
        decoder = SSEDecoder()
        events = decoder.feed(b"data: 1\n\ndata: 2\n\ndata: [DONE]\n\n")
        assert [e.data for e in events] == ["1", "2", "[DONE]"]
        assert events[-1].is_done

    def test_crlf_line_endings(self):
        decoder = SSEDecoder()
        events = decoder.feed(b"event: message_stop\r\ndata: {}\r\n\r\n")
        assert len(events) == 1
        assert events[0].event == "message_stop"

    def test_multibyte_character_split_across_chunks(self):
        """A UTF-8 sequence cut in half must not be replaced with U+FFFD."""
        payload = 'data: {"text":"héllo"}\n\n'.encode("utf-8")
        cut = payload.index(b"\xc3") + 1
        decoder = SSEDecoder()
        assert decoder.feed(payload[:cut]) == []
        events = decoder.feed(payload[cut:])
        assert events[0].json() == {"text": "héllo"}

    def test_flush_returns_unterminated_frame(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data: [DONE]") == []
        events = decoder.flush()
        assert len(events) == 1
        assert events[0].is_done
        assert decoder.flush() == []

    def test_comment_lines_are_kept_aside(self):
        decoder = SSEDecoder()
        events = decoder.feed(b": keep-alive\ndata: x\n\n")
        assert events[0].data == "x"
        assert events[0].other_lines == [": keep-alive"]


class TestFormatSseEvent:
    def test_named_event(self):
        assert format_sse_event("ping", {"type": "ping"}) == b'event: ping\ndata: {"type": "ping"}\n\n'

    def test_data_only_event(self):
        assert format_sse_event(None, "[DONE]") == b"data: [DONE]\n\n"

    def test_formatted_frame_decodes(self):
        decoded = SSEDecoder().feed(format_sse_event("content_block_stop", {"a": 1}))
        assert decoded[0].event == "content_block_stop"
        assert decoded[0].json() == {"a": 1}
