from __future__ import annotations

import time
from typing import Any, Iterable

import pytest

from pyhecate.llm.stream import StreamSession
from pyhecate.llm.types import Chunk
from pyhecate.tools.base import ToolCategory, ToolContext, ToolSpec, object_schema, string


def drain(session: StreamSession, timeout: float = 5.0) -> tuple[list[Chunk], Any]:
    """Poll a session until it closes; returns (chunks, terminal_error)."""
    chunks: list[Chunk] = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        item = session.poll()
        if item is None:
            time.sleep(0.005)
            continue
        kind, payload = item
        if kind == "chunk":
            chunks.append(payload)
        else:
            return chunks, payload
    raise AssertionError("stream session did not close in time")


def scripted(chunks: Iterable[Chunk]) -> StreamSession:
    items = list(chunks)
    return StreamSession(lambda cancelled: iter(items)).start()


class Recorder:
    """Tool handler that remembers every invocation."""

    def __init__(self, reply: str = "ok") -> None:
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    def __call__(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        self.calls.append(args)
        return self.reply


def echo_spec(name: str = "echo", *, requires_approval: bool = False, category: ToolCategory = ToolCategory.SYSTEM) -> ToolSpec:
    return ToolSpec(
        name=name,
        description="Echo the text back",
        parameters=object_schema({"text": string("text to echo")}, ["text"]),
        category=category,
        requires_approval=requires_approval,
    )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
