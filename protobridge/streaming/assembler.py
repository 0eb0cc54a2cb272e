"""Convert between complete responses and stream events."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..codecs import get_codec
from ..core.backend import Dialect
from ..core.exceptions import UpstreamDisconnected
from ..schema import (
    BlockDelta,
    BlockKind,
    BlockLedger,
    BlockStart,
    BlockStop,
    ContentBlock,
    ErrorEvent,
    MessageDelta,
    MessageStart,
    MessageStop,
    RedactedBlock,
    Response,
    StopReason,
    StreamEvent,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
    Usage,
)

logger = logging.getLogger("protobridge")


def assemble_response(events: Iterable[StreamEvent]) -> Response:
    """Fold a stream of events into the Response it describes.

    Raises:
        UpstreamDisconnected: If the stream carries an error event
        MalformedPayload: If the events break the block ordering invariants
    """
    ledger = BlockLedger()
    usage = Usage()
    message_id = ""
    model = ""
    stop_reason: Optional[StopReason] = None
    stop_sequence: Optional[str] = None
    stop_detail: Optional[str] = None

    for event in events:
        if isinstance(event, MessageStart):
            message_id = message_id or event.message_id
            model = model or event.model
            usage = usage.merged(event.usage)
        elif isinstance(event, BlockStart):
            ledger.open(event)
        elif isinstance(event, BlockDelta):
            ledger.append(event)
        elif isinstance(event, BlockStop):
            ledger.close(event.index)
        elif isinstance(event, MessageDelta):
            stop_reason = event.stop_reason or stop_reason
            stop_sequence = event.stop_sequence or stop_sequence
            stop_detail = event.stop_detail or stop_detail
            usage = usage.merged(event.usage)
        elif isinstance(event, MessageStop):
            usage = usage.merged(event.usage)
        elif isinstance(event, ErrorEvent):
            raise UpstreamDisconnected(event.message)

    content: list[ContentBlock] = []
    for slot in ledger.slots:
        if slot.kind is BlockKind.TOOL_USE:
            content.append(ToolUseBlock(
                id=slot.tool_id or "",
                name=slot.tool_name or "",
                arguments_json=slot.buffer or "{}",
            ))
        elif slot.kind is BlockKind.THINKING:
            content.append(ThinkingBlock(thinking=slot.buffer))
        elif slot.kind is BlockKind.REDACTED:
            content.append(RedactedBlock(data=slot.data or ""))
        else:
            content.append(TextBlock(text=slot.buffer))

    return Response(
        id=message_id,
        model=model,
        stop_reason=stop_reason or StopReason.END_TURN,
        content=content,
        usage=usage,
        stop_sequence=stop_sequence,
        stop_detail=stop_detail,
    )


def response_to_events(response: Response) -> list[StreamEvent]:
    """Replay a complete Response as the events a streaming backend would send."""
    events: list[StreamEvent] = [
        MessageStart(
            model=response.model,
            message_id=response.id,
            usage=Usage(input_tokens=response.usage.input_tokens),
        )
    ]
    index = 0
    for block in response.content:
        if isinstance(block, TextBlock):
            events.append(BlockStart(index=index, kind=BlockKind.TEXT))
            if block.text:
                events.append(BlockDelta(index=index, text=block.text))
        elif isinstance(block, ThinkingBlock):
            events.append(BlockStart(index=index, kind=BlockKind.THINKING))
            if block.thinking:
                events.append(BlockDelta(index=index, text=block.thinking))
        elif isinstance(block, ToolUseBlock):
            events.append(BlockStart(
                index=index, kind=BlockKind.TOOL_USE, tool_id=block.id, tool_name=block.name
            ))
            events.append(BlockDelta(index=index, arguments_json=block.arguments_json))
        elif isinstance(block, RedactedBlock):
            events.append(BlockStart(index=index, kind=BlockKind.REDACTED, data=block.data))
        else:
            logger.debug(f"Skipping {type(block).__name__} in synthesized stream")
            continue
        events.append(BlockStop(index=index))
        index += 1

    events.append(MessageDelta(
        stop_reason=response.stop_reason,
        stop_sequence=response.stop_sequence,
        usage=response.usage,
        stop_detail=response.stop_detail,
    ))
    events.append(MessageStop(usage=response.usage))
    return events


def encode_events(dialect: Dialect, events: Iterable[StreamEvent], model: str = "") -> bytes:
    """Encode a finished event list as one SSE body in ``dialect``."""
    encoder = get_codec(dialect).StreamEncoder(model=model)
    return b"".join(encoder.encode(event) for event in events)
