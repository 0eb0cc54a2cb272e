"""Re-frame a live SSE stream from one dialect into the other.

The re-framer decodes source frames into neutral StreamEvents, checks them
against the block ledger and hands them to the destination encoder. Text and
thinking deltas are forwarded as they arrive. Tool-call arguments are held
until the block stops and then sent as one fragment, so the destination sees
exactly the bytes the source produced.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

from ..codecs import get_codec
from ..core.backend import Dialect
from ..core.exceptions import (
    DecodeError,
    ErrorKind,
    MalformedPayload,
    UnexpectedStreamTermination,
    UpstreamDisconnected,
)
from ..core.sse import SSEDecoder
from ..schema import (
    BlockDelta,
    BlockKind,
    BlockLedger,
    BlockStart,
    BlockStop,
    ErrorEvent,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamEvent,
    Usage,
)

logger = logging.getLogger("protobridge")

DISCONNECT_MESSAGE = "upstream closed the stream before the message completed"


class StreamReframer:
    """Converts one response stream from ``source`` framing to ``destination`` framing.

    State lives for a single stream only. Once a terminal frame (a clean
    message stop or an error) has been produced, further input is ignored.
    """

    def __init__(
        self,
        source: Dialect,
        destination: Dialect,
        message_id: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.source = source
        self.destination = destination
        self.model = model or ""
        self.decoder = get_codec(source).StreamDecoder()
        self.encoder = get_codec(destination).StreamEncoder(message_id=message_id, model=self.model)
        self.ledger = BlockLedger()
        self.usage = Usage()
        self.errors: list[UnexpectedStreamTermination] = []
        self.error: Optional[ErrorEvent] = None
        self.completed = False
        self._sse = SSEDecoder()
        self._started = False
        self._stop_reason_seen = False

    @property
    def done(self) -> bool:
        return self.completed or self.error is not None

    def feed(self, chunk: bytes) -> list[bytes]:
        """Consume raw upstream bytes and return encoded destination frames."""
        if self.done:
            return []
        return self._process_frames(self._sse.feed(chunk))

    def finish(self) -> list[bytes]:
        """Handle upstream EOF."""
        if self.done:
            return []
        output = self._process_frames(self._sse.flush())
        if self.done:
            return output
        if self._stop_reason_seen:
            output.extend(self._handle(MessageStop()))
        else:
            output.extend(self._terminate(
                ErrorEvent(ErrorKind.UPSTREAM_DISCONNECTED, DISCONNECT_MESSAGE)
            ))
        return output

    def abort(self, message: str) -> list[bytes]:
        """Terminate the stream after a transport error."""
        if self.done:
            return []
        return self._terminate(ErrorEvent(ErrorKind.UPSTREAM_DISCONNECTED, message))

    async def reframe(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Drive the re-framer over an async byte iterator.

        Args:
            chunks: Upstream body chunks; may raise UpstreamDisconnected

        Yields:
            Destination SSE frames as bytes
        """
        try:
            async for chunk in chunks:
                for frame in self.feed(chunk):
                    yield frame
                if self.done:
                    return
        except UpstreamDisconnected as exc:
            logger.warning(f"Upstream disconnected mid-stream: {exc.message}")
            for frame in self.abort(exc.message):
                yield frame
            return
        for frame in self.finish():
            yield frame

    def _process_frames(self, frames) -> list[bytes]:
        output: list[bytes] = []
        for frame in frames:
            if self.done:
                break
            try:
                events = self.decoder.decode_stream_event(frame)
                for event in events:
                    if not isinstance(event, (MessageStart, ErrorEvent)):
                        output.extend(self._ensure_started())
                    output.extend(self._handle(event))
                    if self.done:
                        break
            except (DecodeError, MalformedPayload) as exc:
                logger.warning(f"Terminating stream on bad upstream frame: {exc.message}")
                output.extend(self._terminate(ErrorEvent(exc.kind, exc.message)))
            except (TypeError, ValueError, AttributeError) as exc:
                message = f"unreadable upstream frame: {exc}"
                logger.warning(f"Terminating stream on bad upstream frame: {message}")
                output.extend(self._terminate(ErrorEvent(ErrorKind.DECODE_ERROR, message)))
        return [frame for frame in output if frame]

    def _handle(self, event: StreamEvent) -> list[bytes]:
        if isinstance(event, ErrorEvent):
            return self._terminate(event)
        if isinstance(event, MessageStart):
            if self._started:
                return []
            self._started = True
            self.usage = self.usage.merged(event.usage)
            if event.model:
                self.model = event.model
            return [self.encoder.encode(MessageStart(
                model=self.model, message_id=event.message_id, usage=self.usage
            ))]

        output: list[bytes] = []
        if isinstance(event, BlockStart):
            self.ledger.open(event)
            output.append(self.encoder.encode(event))
        elif isinstance(event, BlockDelta):
            slot = self.ledger.append(event)
            if slot.kind is not BlockKind.TOOL_USE and event.text:
                output.append(self.encoder.encode(event))
        elif isinstance(event, BlockStop):
            output.extend(self._close_block(event.index))
        elif isinstance(event, MessageDelta):
            if event.stop_reason is not None:
                self._stop_reason_seen = True
            self.usage = self.usage.merged(event.usage)
            output.append(self.encoder.encode(MessageDelta(
                stop_reason=event.stop_reason,
                stop_sequence=event.stop_sequence,
                usage=self.usage,
                stop_detail=event.stop_detail,
            )))
        elif isinstance(event, MessageStop):
            self.usage = self.usage.merged(event.usage)
            for index in self.ledger.open_indices():
                output.extend(self._force_close(index))
            self.completed = True
            output.append(self.encoder.encode(MessageStop(usage=self.usage)))
        return output

    def _ensure_started(self) -> list[bytes]:
        if self._started:
            return []
        self._started = True
        return [self.encoder.encode(MessageStart(model=self.model, usage=self.usage))]

    def _close_block(self, index: int) -> list[bytes]:
        slot = self.ledger.close(index)
        output: list[bytes] = []
        if slot.kind is BlockKind.TOOL_USE:
            arguments = slot.buffer
            if arguments:
                try:
                    json.loads(arguments)
                except json.JSONDecodeError:
                    logger.warning(f"Tool call arguments for block {index} are not valid JSON")
            elif self.destination is Dialect.OPENAI:
                arguments = "{}"
            if arguments:
                output.append(self.encoder.encode(BlockDelta(index=index, arguments_json=arguments)))
        output.append(self.encoder.encode(BlockStop(index=index)))
        return output

    def _force_close(self, index: int) -> list[bytes]:
        kind = self.ledger.slots[index].kind
        if kind in (BlockKind.TOOL_USE, BlockKind.THINKING):
            error = UnexpectedStreamTermination(
                f"{kind.value} block {index} was still open at message stop", index=index
            )
            self.errors.append(error)
            logger.warning(error.message)
        return self._close_block(index)

    def _terminate(self, event: ErrorEvent) -> list[bytes]:
        self.error = event
        return [self.encoder.encode(event)]
