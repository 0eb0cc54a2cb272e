"""Dialect-neutral schema model shared by both codecs."""

from .events import (
    BlockDelta,
    BlockKind,
    BlockLedger,
    BlockSlot,
    BlockStart,
    BlockState,
    BlockStop,
    ErrorEvent,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamEvent,
)
from .model import (
    ContentBlock,
    ImageBlock,
    Message,
    RedactedBlock,
    Request,
    Response,
    Role,
    StopReason,
    TextBlock,
    ThinkingBlock,
    Tool,
    ToolChoice,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)

__all__ = [
    "BlockDelta",
    "BlockKind",
    "BlockLedger",
    "BlockSlot",
    "BlockStart",
    "BlockState",
    "BlockStop",
    "ContentBlock",
    "ErrorEvent",
    "ImageBlock",
    "Message",
    "MessageDelta",
    "MessageStart",
    "MessageStop",
    "RedactedBlock",
    "Request",
    "Response",
    "Role",
    "StopReason",
    "StreamEvent",
    "TextBlock",
    "ThinkingBlock",
    "Tool",
    "ToolChoice",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
]
