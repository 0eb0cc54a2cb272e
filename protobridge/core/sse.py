"""SSE (Server-Sent Events) framing utilities."""

import json
from dataclasses import dataclass, field
from typing import Any, Optional


DONE_SENTINEL = "[DONE]"


@dataclass
class SSEEvent:
    data: Optional[str]
    event: Optional[str] = None
    other_lines: list[str] = field(default_factory=list)

    @property
    def is_done(self) -> bool:
        return self.data is not None and self.data.strip() == DONE_SENTINEL

    def json(self) -> Any:
        """Parse the data payload; raises ``json.JSONDecodeError`` on bad input."""
        return json.loads(self.data or "")


class SSEDecoder:
    """Incrementally splits a byte stream into complete SSE frames.

    Frames may be split across chunks at any byte boundary; partial frames
    stay buffered until their blank-line terminator arrives.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._pending = b""

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        if not chunk:
            return []
        data = self._pending + chunk
        try:
            text = data.decode("utf-8")
            self._pending = b""
        except UnicodeDecodeError as exc:
            # keep an incomplete trailing multi-byte sequence for the next chunk
            if exc.start >= len(data) - 3:
                text = data[: exc.start].decode("utf-8", errors="replace")
                self._pending = data[exc.start:]
            else:
                text = data.decode("utf-8", errors="replace")
                self._pending = b""
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        self._buffer += text
        events: list[SSEEvent] = []

        while True:
            sep_index = self._buffer.find("\n\n")
            if sep_index == -1:
                break
            raw_event = self._buffer[:sep_index]
            self._buffer = self._buffer[sep_index + 2:]
            if not raw_event.strip():
                continue
            events.append(self._parse_event(raw_event))

        return events

    def flush(self) -> list[SSEEvent]:
        """Return a final frame left without its terminator, if any."""
        leftover = self._buffer
        if self._pending:
            leftover += self._pending.decode("utf-8", errors="replace")
        self._buffer = ""
        self._pending = b""
        if not leftover.strip():
            return []
        return [self._parse_event(leftover.strip("\n"))]

    @staticmethod
    def _parse_event(raw: str) -> SSEEvent:
        data_lines: list[str] = []
        other_lines: list[str] = []
        event_name: Optional[str] = None
        for line in raw.split("\n"):
            if line.startswith("data:"):
                data_lines.append(line[5:].lstrip())
            elif line.startswith("event:"):
                event_name = line[6:].strip()
            else:
                other_lines.append(line)
        data = "\n".join(data_lines) if data_lines else None
        return SSEEvent(data=data, event=event_name, other_lines=other_lines)


def format_sse_event(event_type: Optional[str], data: Any) -> bytes:
    """Format one SSE frame; ``event_type`` of None omits the ``event:`` line."""
    json_str = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    if event_type:
        return f"event: {event_type}\ndata: {json_str}\n\n".encode("utf-8")
    return f"data: {json_str}\n\n".encode("utf-8")


def detect_sse_stream_error(data: bytes) -> Optional[str]:
    """
    Check if buffered SSE data contains an error event.

    Returns an error message if an error is detected, None otherwise.

    Detects patterns like:
    - Anthropic: data: {"type":"error","error":{...}}
    - Generic: data: {"error":{...}}
    """
    text = data.decode("utf-8", errors="replace")

    for line in text.split("\n"):
        line = line.strip()
        if not line.startswith("data:"):
            continue

        json_part = line[5:].strip()
        if not json_part or json_part == DONE_SENTINEL:
            continue

        try:
            parsed = json.loads(json_part)
        except json.JSONDecodeError:
            continue

        if not isinstance(parsed, dict):
            continue

        if parsed.get("type") == "error":
            error_obj = parsed.get("error") or {}
            error_msg = (error_obj.get("message") or str(error_obj)) if error_obj else "unknown error"
            error_type = error_obj.get("type", "unknown") if isinstance(error_obj, dict) else "unknown"
            return f"SSE stream error: {error_msg} (type={error_type})"

        error_obj = parsed.get("error")
        if isinstance(error_obj, dict):
            error_msg = error_obj.get("message") or str(error_obj)
            error_type = error_obj.get("type", "unknown")
            return f"SSE stream error: {error_msg} (type={error_type})"

    return None
