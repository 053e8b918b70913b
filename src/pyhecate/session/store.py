from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_data_dir

from ..llm.types import Message, ToolCall

APP_NAME = "pyhecate"


def _sessions_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "sessions"
    d.mkdir(parents=True, exist_ok=True)
    return d


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def message_to_dict(msg: Message) -> dict[str, Any]:
    d: dict[str, Any] = {"role": msg.role, "content": msg.content}
    if msg.tool_calls:
        d["tool_calls"] = [{"id": c.id, "name": c.name, "arguments": c.arguments} for c in msg.tool_calls]
    if msg.tool_call_id:
        d["tool_call_id"] = msg.tool_call_id
    if msg.is_error:
        d["is_error"] = True
    if msg.local:
        d["local"] = True
    return d


def message_from_dict(obj: dict[str, Any]) -> Message:
    calls = tuple(
        ToolCall(id=str(c.get("id") or ""), name=str(c.get("name") or ""), arguments=c.get("arguments") or {})
        for c in obj.get("tool_calls") or []
        if isinstance(c, dict)
    )
    role = obj.get("role")
    if role not in {"system", "user", "assistant", "tool"}:
        raise ValueError(f"bad role: {role!r}")
    return Message(
        role=role,
        content=str(obj.get("content") or ""),
        tool_calls=calls,
        tool_call_id=obj.get("tool_call_id"),
        is_error=bool(obj.get("is_error")),
        local=bool(obj.get("local")),
    )


@dataclass
class SessionStore:
    """Append-only JSONL transcript file, one message per line."""

    session_id: str
    path: Path

    @staticmethod
    def open(session_id: str | None = None, directory: Path | None = None) -> "SessionStore":
        sid = session_id or new_session_id()
        path = (directory or _sessions_dir()) / f"{sid}.jsonl"
        return SessionStore(session_id=sid, path=path)

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[Message]:
        msgs: list[Message] = []
        if not self.path.exists():
            return msgs
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                msgs.append(message_from_dict(json.loads(line)))
            except (ValueError, TypeError, AttributeError):
                # a crash mid-write can leave a partial trailing line
                continue
        return msgs

    def append(self, msg: Message) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(message_to_dict(msg), ensure_ascii=False) + "\n")
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                # some filesystems do not support fsync
                pass


def list_sessions(directory: Path | None = None) -> list[str]:
    d = directory or _sessions_dir()
    if not d.exists():
        return []
    files = sorted(d.glob("*.jsonl"), key=lambda p: p.stat().st_mtime, reverse=True)
    return [p.stem for p in files]
