"""Dialect-neutral streaming events and the block-index ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from ..core.exceptions import ErrorKind, MalformedPayload
from .model import StopReason, Usage


class BlockKind(str, Enum):
    TEXT = "text"
    TOOL_USE = "tool_use"
    THINKING = "thinking"
    REDACTED = "redacted_thinking"


@dataclass(frozen=True)
class MessageStart:
    model: str = ""
    message_id: str = ""
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class BlockStart:
    index: int
    kind: BlockKind
    tool_id: Optional[str] = None
    tool_name: Optional[str] = None
    data: Optional[str] = None


@dataclass(frozen=True)
class BlockDelta:
    """Incremental content for one block: ``text`` for text/thinking, ``arguments_json`` for tools."""

    index: int
    text: Optional[str] = None
    arguments_json: Optional[str] = None


@dataclass(frozen=True)
class BlockStop:
    index: int


@dataclass(frozen=True)
class MessageDelta:
    stop_reason: Optional[StopReason] = None
    stop_sequence: Optional[str] = None
    usage: Optional[Usage] = None
    stop_detail: Optional[str] = None


@dataclass(frozen=True)
class MessageStop:
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class ErrorEvent:
    kind: ErrorKind
    message: str
    error_type: Optional[str] = None


StreamEvent = Union[
    MessageStart,
    BlockStart,
    BlockDelta,
    BlockStop,
    MessageDelta,
    MessageStop,
    ErrorEvent,
]


class BlockState(str, Enum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class BlockSlot:
    """Running state of one content block inside a stream."""

    kind: BlockKind
    state: BlockState = BlockState.OPEN
    tool_id: Optional[str] = None
    tool_name: Optional[str] = None
    data: Optional[str] = None
    parts: list[str] = field(default_factory=list)

    @property
    def buffer(self) -> str:
        return "".join(self.parts)


class BlockLedger:
    """Tracks blocks by index and enforces the stream ordering invariants.

    Indices must start at 0 and grow by one, a delta may only target an open
    block, and a block is stopped exactly once.
    """

    def __init__(self) -> None:
        self.slots: list[BlockSlot] = []

    def state_of(self, index: int) -> BlockState:
        if 0 <= index < len(self.slots):
            return self.slots[index].state
        return BlockState.NOT_STARTED

    def open(self, event: BlockStart) -> BlockSlot:
        if event.index != len(self.slots):
            raise MalformedPayload(
                f"block index {event.index} started out of order (expected {len(self.slots)})",
                invariant="block_indices",
            )
        slot = BlockSlot(
            kind=event.kind,
            tool_id=event.tool_id,
            tool_name=event.tool_name,
            data=event.data,
        )
        self.slots.append(slot)
        return slot

    def append(self, event: BlockDelta) -> BlockSlot:
        state = self.state_of(event.index)
        if state is not BlockState.OPEN:
            raise MalformedPayload(
                f"delta for block {event.index} arrived while block is {state.value}",
                invariant="block_indices",
            )
        slot = self.slots[event.index]
        fragment = event.arguments_json if slot.kind is BlockKind.TOOL_USE else event.text
        if fragment:
            slot.parts.append(fragment)
        return slot

    def close(self, index: int) -> BlockSlot:
        state = self.state_of(index)
        if state is not BlockState.OPEN:
            raise MalformedPayload(
                f"stop for block {index} arrived while block is {state.value}",
                invariant="block_indices",
            )
        slot = self.slots[index]
        slot.state = BlockState.CLOSED
        return slot

    def open_indices(self) -> list[int]:
        return [i for i, slot in enumerate(self.slots) if slot.state is BlockState.OPEN]
