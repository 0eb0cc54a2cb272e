"""Helpers shared by the Anthropic and OpenAI codecs."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Mapping, Optional

from ..core.exceptions import DecodeError, MalformedPayload
from ..schema import Response, StopReason

logger = logging.getLogger("protobridge")

ERROR_PREFIX = "[Error] "
DEFAULT_MAX_TOKENS = 4096
CONTENT_FILTER_DETAIL = "content filtered by upstream provider"
REDACTED_DROPPED_WARNING = "redacted_thinking blocks dropped: no OpenAI equivalent"

EFFORT_LEVELS = ("minimal", "low", "medium", "high")
EFFORT_BUDGETS = {
    "minimal": 1024,
    "low": 2048,
    "medium": 8192,
    "high": 16384,
}

ANTHROPIC_STOP_REASONS = {
    StopReason.END_TURN: "end_turn",
    StopReason.MAX_TOKENS: "max_tokens",
    StopReason.TOOL_USE: "tool_use",
    StopReason.STOP_SEQUENCE: "stop_sequence",
    StopReason.ERROR: "refusal",
}

OPENAI_FINISH_REASONS = {
    StopReason.END_TURN: "stop",
    StopReason.MAX_TOKENS: "length",
    StopReason.TOOL_USE: "tool_calls",
    StopReason.STOP_SEQUENCE: "stop",
    StopReason.ERROR: "content_filter",
}


def anthropic_stop_reason(raw: Optional[str]) -> StopReason:
    """Map an Anthropic ``stop_reason`` string to a StopReason."""
    if raw is None:
        return StopReason.END_TURN
    if not isinstance(raw, str):
        raise MalformedPayload("stop_reason must be a string", invariant="stop_reason")
    mapping = {
        "end_turn": StopReason.END_TURN,
        "max_tokens": StopReason.MAX_TOKENS,
        "tool_use": StopReason.TOOL_USE,
        "stop_sequence": StopReason.STOP_SEQUENCE,
        "refusal": StopReason.ERROR,
        "pause_turn": StopReason.END_TURN,
    }
    reason = mapping.get(raw)
    if reason is None:
        logger.debug(f"Unknown Anthropic stop_reason '{raw}', treating as end_turn")
        return StopReason.END_TURN
    return reason


def openai_stop_reason(raw: Optional[str]) -> StopReason:
    """Map an OpenAI ``finish_reason`` string to a StopReason."""
    if raw is None:
        return StopReason.END_TURN
    if not isinstance(raw, str):
        raise MalformedPayload("finish_reason must be a string", invariant="stop_reason")
    mapping = {
        "stop": StopReason.END_TURN,
        "length": StopReason.MAX_TOKENS,
        "tool_calls": StopReason.TOOL_USE,
        "function_call": StopReason.TOOL_USE,
        "content_filter": StopReason.ERROR,
    }
    return mapping.get(raw, StopReason.END_TURN)


def generate_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:24]}"


def to_anthropic_id(message_id: Optional[str]) -> str:
    """Rewrite a completion id into the ``msg_`` form."""
    if not message_id:
        return generate_id("msg_")
    if message_id.startswith("msg_"):
        return message_id
    if message_id.startswith("chatcmpl-"):
        return f"msg_{message_id[len('chatcmpl-'):]}"
    return f"msg_{message_id}"


def to_openai_id(message_id: Optional[str]) -> str:
    """Rewrite a message id into the ``chatcmpl-`` form."""
    if not message_id:
        return generate_id("chatcmpl-")
    if message_id.startswith("chatcmpl-"):
        return message_id
    if message_id.startswith("msg_"):
        return f"chatcmpl-{message_id[len('msg_'):]}"
    return f"chatcmpl-{message_id}"


def canonical_json(value: Any) -> str:
    """Serialize tool input the same way on every path so arguments stay stable."""
    return json.dumps(value, ensure_ascii=False)


def parse_tool_arguments(arguments_json: str) -> Any:
    """Parse tool arguments for a dialect that carries them as an object."""
    if not arguments_json:
        return {}
    try:
        return json.loads(arguments_json)
    except json.JSONDecodeError:
        logger.warning("Tool arguments are not valid JSON; wrapping them as raw text")
        return {"raw": arguments_json}


def load_json_object(body: bytes | str, what: str = "body") -> dict[str, Any]:
    """Parse a JSON document that must be an object."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"{what} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise DecodeError(f"{what} must be a JSON object")
    return payload


def require_field(payload: Mapping[str, Any], field: str) -> Any:
    if field not in payload or payload[field] is None:
        raise DecodeError(f"missing required field '{field}'", field=field)
    return payload[field]


def optional_object(
    payload: Mapping[str, Any],
    field: str,
    where: Optional[str] = None,
    invariant: Optional[str] = None,
) -> Mapping[str, Any]:
    """Read a nested object field; missing or null reads as empty."""
    value = payload.get(field)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedPayload(
            f"{where or field} must be an object",
            invariant=invariant or field,
        )
    return value


def optional_list(
    payload: Mapping[str, Any],
    field: str,
    where: Optional[str] = None,
    invariant: Optional[str] = None,
) -> list[Any]:
    value = payload.get(field)
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedPayload(
            f"{where or field} must be a list",
            invariant=invariant or field,
        )
    return value


def optional_index(payload: Mapping[str, Any], field: str = "index", default: int = 0) -> int:
    value = payload.get(field, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedPayload(f"{field} must be a non-negative integer", invariant="block_indices")
    return value


def optional_str(payload: Mapping[str, Any], field: str, default: str = "") -> str:
    value = payload.get(field)
    if value is None:
        return default
    if not isinstance(value, str):
        raise MalformedPayload(f"{field} must be a string", invariant=field)
    return value


def token_count(payload: Mapping[str, Any], field: str) -> int:
    value = payload.get(field)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedPayload(f"usage.{field} must be a number", invariant="usage")
    return int(value)


def optional_int(payload: Mapping[str, Any], field: str) -> Optional[int]:
    value = payload.get(field)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedPayload(f"{field} must be an integer", invariant=field)
    return value


def optional_number(
    payload: Mapping[str, Any],
    field: str,
    low: Optional[float] = None,
    high: Optional[float] = None,
) -> Optional[float]:
    """Read a numeric field and enforce the dialect's legal range."""
    value = payload.get(field)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedPayload(f"{field} must be a number", invariant=field)
    if (low is not None and value < low) or (high is not None and value > high):
        raise MalformedPayload(
            f"{field}={value} is outside the legal range [{low}, {high}]",
            invariant=field,
        )
    return value


def clean_schema(schema: Any) -> Any:
    """Remove ``format: uri`` from a JSON schema, recursing into properties and items."""
    if not isinstance(schema, dict):
        return schema
    cleaned = dict(schema)
    if cleaned.get("format") == "uri":
        cleaned.pop("format")
    properties = cleaned.get("properties")
    if isinstance(properties, dict):
        cleaned["properties"] = {
            name: clean_schema(value) for name, value in properties.items()
        }
    if "items" in cleaned:
        cleaned["items"] = clean_schema(cleaned["items"])
    return cleaned


def parse_model_with_effort(model: str) -> tuple[str, Optional[str]]:
    """Split a ``-minimal|-low|-medium|-high`` suffix off a model name.

    >>> parse_model_with_effort("gpt-5.1-codex-high")
    ('gpt-5.1-codex', 'high')
    """
    for effort in EFFORT_LEVELS:
        suffix = f"-{effort}"
        if model.endswith(suffix) and len(model) > len(suffix):
            return model[: -len(suffix)], effort
    return model, None


def effort_to_budget(effort: Optional[str], max_tokens: Optional[int]) -> Optional[int]:
    """Thinking budget for an effort level, or None if it would not fit under max_tokens."""
    if not effort:
        return None
    budget = EFFORT_BUDGETS.get(effort)
    if budget is None:
        return None
    if max_tokens is not None and budget >= max_tokens:
        logger.debug(
            f"Dropping reasoning_effort={effort}: budget {budget} does not fit max_tokens={max_tokens}"
        )
        return None
    return budget


def budget_to_effort(budget: Optional[int]) -> Optional[str]:
    if not budget:
        return None
    if budget <= EFFORT_BUDGETS["low"]:
        return "low"
    if budget <= EFFORT_BUDGETS["medium"]:
        return "medium"
    return "high"


def parse_data_url(url: str) -> Optional[tuple[str, str]]:
    """Split ``data:<media>;base64,<data>`` into ``(media_type, data)``."""
    if not url.startswith("data:"):
        return None
    rest = url[len("data:"):]
    meta, sep, data = rest.partition(",")
    if not sep:
        return None
    media_type = meta.split(";", 1)[0]
    return media_type, data


def proxy_metadata(response: Response, extra_warnings: Optional[list[str]] = None) -> Optional[dict[str, Any]]:
    """Non-standard metadata object carrying lossy-mapping markers."""
    warnings = list(response.warnings) + list(extra_warnings or [])
    metadata: dict[str, Any] = {}
    if warnings:
        metadata["warnings"] = warnings
    if response.stop_detail:
        metadata["stop_detail"] = response.stop_detail
    return metadata or None


def read_proxy_metadata(payload: Mapping[str, Any]) -> tuple[list[str], Optional[str]]:
    metadata = payload.get("proxy_metadata")
    if not isinstance(metadata, dict):
        return [], None
    warnings = [str(item) for item in metadata.get("warnings") or []]
    stop_detail = metadata.get("stop_detail")
    return warnings, stop_detail if isinstance(stop_detail, str) else None


def text_of_parts(content: Any) -> str:
    """Flatten string-or-list-of-text-parts content into one string."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, Mapping) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "\n".join(parts)
    return str(content)


def anthropic_error_type(status_code: int) -> str:
    mapping = {
        400: "invalid_request_error",
        401: "authentication_error",
        403: "permission_error",
        404: "not_found_error",
        413: "request_too_large",
        429: "rate_limit_error",
        529: "overloaded_error",
    }
    if status_code in mapping:
        return mapping[status_code]
    if 400 <= status_code < 500:
        return "invalid_request_error"
    return "api_error"


def openai_error_type(status_code: int) -> str:
    mapping = {
        400: "invalid_request_error",
        401: "authentication_error",
        403: "permission_error",
        404: "not_found_error",
        429: "rate_limit_error",
    }
    if status_code in mapping:
        return mapping[status_code]
    if 400 <= status_code < 500:
        return "invalid_request_error"
    return "server_error"


def parse_error_body(body: bytes) -> tuple[str, Optional[str]]:
    """Extract ``(message, type)`` from an error body in either dialect.

    Falls back to the raw text when the body is not a recognized envelope.
    """
    text = body.decode("utf-8", errors="replace").strip()
    try:
        payload = json.loads(text) if text else None
    except json.JSONDecodeError:
        return text or "upstream returned an empty error body", None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message") or json.dumps(error, ensure_ascii=False)
            error_type = error.get("type")
            return str(message), str(error_type) if error_type else None
        if isinstance(error, str):
            return error, None
        if isinstance(payload.get("message"), str):
            return payload["message"], None
    return text, None
