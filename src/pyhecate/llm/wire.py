from __future__ import annotations

import json
from typing import Any, Iterable, Literal

from .types import Chunk, DiscreteToolUse, EmbeddedToolCalls, Message, ToolCall, Usage, new_call_id

SchemaFormat = Literal["anthropic", "openai"]


# ---------------------------------------------------------
# outbound
# ---------------------------------------------------------


def encode_tool_call(call: ToolCall) -> dict[str, Any]:
    return {"id": call.id, "name": call.name, "arguments": call.arguments}


def encode_message(msg: Message) -> dict[str, Any]:
    d: dict[str, Any] = {"role": msg.role}
    if msg.content or not msg.tool_calls:
        d["content"] = msg.content
    if msg.tool_calls:
        d["tool_calls"] = [encode_tool_call(c) for c in msg.tool_calls]
    if msg.tool_call_id:
        d["tool_call_id"] = msg.tool_call_id
    return d


def build_request(
    model: str,
    history: Iterable[Message],
    *,
    system_prompt: str | None = None,
    tools: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Serialize history into the daemon's chat request.

    System-role entries in the history are local notices and are not sent;
    the configured system prompt goes first instead.
    """
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for m in history:
        if m.role == "system" or m.local:
            continue
        messages.append(encode_message(m))
    req: dict[str, Any] = {"model": model, "messages": messages, "stream": True}
    if tools:
        req["tools"] = tools
    return req


# ---------------------------------------------------------
# inbound
# ---------------------------------------------------------


def _decode_arguments(raw: Any) -> Any:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # left as a string; the executor reports it as invalid arguments
            return raw
    return raw


def decode_tool_call(obj: Any) -> ToolCall | None:
    """Accept ``{id, name, arguments|input}`` or ``{id?, function: {name, arguments}}``."""
    if not isinstance(obj, dict):
        return None
    fn = obj.get("function")
    if isinstance(fn, dict):
        name = fn.get("name")
        raw_args = fn.get("arguments")
    else:
        name = obj.get("name")
        raw_args = obj.get("arguments", obj.get("input"))
    if not name:
        return None
    call_id = obj.get("id") or new_call_id()
    return ToolCall(id=str(call_id), name=str(name), arguments=_decode_arguments(raw_args))


def _decode_usage(obj: dict[str, Any]) -> Usage | None:
    keys = ("prompt_eval_count", "eval_count", "total_duration", "load_duration", "eval_duration")
    if not any(k in obj for k in keys):
        return None

    def n(k: str) -> int:
        try:
            return int(obj.get(k) or 0)
        except (TypeError, ValueError):
            return 0

    return Usage(
        prompt_tokens=n("prompt_eval_count"),
        completion_tokens=n("eval_count"),
        total_duration=n("total_duration"),
        load_duration=n("load_duration"),
        eval_duration=n("eval_duration"),
    )


def decode_chunk(obj: dict[str, Any]) -> Chunk:
    """Turn one decoded frame into a Chunk, classifying any tool signal once.

    A discrete ``tool_use`` object wins over an embedded ``tool_calls``
    array when a frame carries both.
    """
    text = ""
    embedded: list[ToolCall] = []

    msg = obj.get("message")
    if isinstance(msg, dict):
        text = str(msg.get("content") or "")
        for raw in msg.get("tool_calls") or []:
            call = decode_tool_call(raw)
            if call is not None:
                embedded.append(call)
    elif isinstance(obj.get("content"), str):
        text = obj["content"]

    signal = None
    discrete = decode_tool_call(obj.get("tool_use"))
    if discrete is not None:
        signal = DiscreteToolUse(discrete)
    elif embedded:
        signal = EmbeddedToolCalls(tuple(embedded))

    return Chunk(
        text=text,
        signal=signal,
        done=bool(obj.get("done")),
        usage=_decode_usage(obj),
        model=obj.get("model") if isinstance(obj.get("model"), str) else None,
    )


def fold_chunks(chunks: Iterable[Chunk]) -> Message:
    """Collapse a chunk sequence into the assistant message it describes."""
    parts: list[str] = []
    calls: list[ToolCall] = []
    for c in chunks:
        parts.append(c.text)
        calls.extend(c.tool_calls)
    return Message.assistant("".join(parts), calls)
