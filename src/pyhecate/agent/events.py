from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..llm.types import Chunk, Message, ToolCall, ToolResult
from ..tools.base import ToolSpec
from ..tools.executor import ApprovalDecision

# ---------------------------------------------------------
# events: things that happened
# ---------------------------------------------------------


@dataclass(frozen=True)
class UserInput:
    text: str


@dataclass(frozen=True)
class ChunkReceived:
    chunk: Chunk


@dataclass(frozen=True)
class StreamClosed:
    pass


@dataclass(frozen=True)
class StreamFailed:
    error: BaseException


@dataclass(frozen=True)
class CancelRequested:
    pass


@dataclass(frozen=True)
class ApprovalRequired:
    spec: ToolSpec
    call: ToolCall


@dataclass(frozen=True)
class ApprovalDecided:
    call_id: str
    decision: ApprovalDecision


@dataclass(frozen=True)
class ToolStarted:
    call_id: str


@dataclass(frozen=True)
class ToolFinished:
    result: ToolResult


Event = Union[
    UserInput,
    ChunkReceived,
    StreamClosed,
    StreamFailed,
    CancelRequested,
    ApprovalRequired,
    ApprovalDecided,
    ToolStarted,
    ToolFinished,
]

# ---------------------------------------------------------
# effects: things the driver must do
# ---------------------------------------------------------


@dataclass(frozen=True)
class OpenStream:
    round: int


@dataclass(frozen=True)
class CloseStream:
    pass


@dataclass(frozen=True)
class EmitText:
    text: str


@dataclass(frozen=True)
class AppendMessage:
    message: Message


@dataclass(frozen=True)
class ResolveTool:
    call: ToolCall


@dataclass(frozen=True)
class PromptApproval:
    spec: ToolSpec
    call: ToolCall


@dataclass(frozen=True)
class SettleApproval:
    call_id: str
    decision: ApprovalDecision


@dataclass(frozen=True)
class AbandonTool:
    call_id: str


@dataclass(frozen=True)
class RoundFinished:
    # done | cancelled | denied
    reason: str = "done"


@dataclass(frozen=True)
class RoundFailed:
    error: BaseException


Effect = Union[
    OpenStream,
    CloseStream,
    EmitText,
    AppendMessage,
    ResolveTool,
    PromptApproval,
    SettleApproval,
    AbandonTool,
    RoundFinished,
    RoundFailed,
]
