from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

Role = Literal["system", "user", "assistant", "tool"]


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    # dict once decoded; a raw JSON string is tolerated until the executor decodes it
    arguments: Any = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class Message:
    role: Role
    content: str = ""
    # Assistant-only: calls requested in this turn
    tool_calls: tuple[ToolCall, ...] = ()
    # Tool-only: which call this message answers
    tool_call_id: str | None = None
    is_error: bool = False
    # Local scratch messages (notices, errors) are shown but never sent upstream
    local: bool = False

    @staticmethod
    def user(text: str) -> "Message":
        return Message(role="user", content=text)

    @staticmethod
    def assistant(text: str, calls: tuple[ToolCall, ...] | list[ToolCall] = ()) -> "Message":
        return Message(role="assistant", content=text, tool_calls=tuple(calls))

    @staticmethod
    def tool(result: ToolResult) -> "Message":
        return Message(
            role="tool",
            content=result.content,
            tool_call_id=result.tool_call_id,
            is_error=result.is_error,
        )

    @staticmethod
    def notice(text: str) -> "Message":
        return Message(role="system", content=text, local=True)


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_duration: int = 0
    load_duration: int = 0
    eval_duration: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_duration=self.total_duration + other.total_duration,
            load_duration=self.load_duration + other.load_duration,
            eval_duration=self.eval_duration + other.eval_duration,
        )

    @property
    def tokens_per_second(self) -> float:
        if self.eval_duration <= 0:
            return 0.0
        return self.completion_tokens / (self.eval_duration / 1e9)


# Tool-call signal carried by a decoded chunk. The two inbound shapes are
# distinguished once, at decode time, so the loop only has to match on type.


@dataclass(frozen=True)
class DiscreteToolUse:
    call: ToolCall


@dataclass(frozen=True)
class EmbeddedToolCalls:
    calls: tuple[ToolCall, ...]


ToolSignal = Union[DiscreteToolUse, EmbeddedToolCalls]


@dataclass(frozen=True)
class Chunk:
    text: str = ""
    signal: Optional[ToolSignal] = None
    done: bool = False
    usage: Optional[Usage] = None
    model: str | None = None

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        if isinstance(self.signal, DiscreteToolUse):
            return (self.signal.call,)
        if isinstance(self.signal, EmbeddedToolCalls):
            return self.signal.calls
        return ()
