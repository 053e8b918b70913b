from __future__ import annotations

import json
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable

from platformdirs import user_data_dir

APP_NAME = "pyhecate"


def _events_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "events"
    d.mkdir(parents=True, exist_ok=True)
    return d


@dataclass
class Event:
    ts: float
    type: str
    data: dict[str, Any]


class EventStore:
    """Append-only JSONL event log for one session.

    Tool workers and the stream reader log from their own threads, so
    writes are serialized. Reads skip lines that fail to decode.
    """

    def __init__(self, session_id: str, path: Path) -> None:
        self.session_id = session_id
        self.path = path
        self._lock = threading.Lock()

    @staticmethod
    def open(session_id: str, directory: Path | None = None) -> "EventStore":
        d = directory or _events_dir()
        d.mkdir(parents=True, exist_ok=True)
        return EventStore(session_id=session_id, path=d / f"{session_id}.jsonl")

    def append(self, event_type: str, data: dict[str, Any]) -> None:
        ev = Event(ts=time.time(), type=event_type, data=data)
        line = json.dumps(asdict(ev), ensure_ascii=False, default=str) + "\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)

    def iter_events(self, event_type: str | None = None) -> Iterable[Event]:
        if not self.path.exists():
            return []
        out: list[Event] = []
        for line in self.path.read_text(encoding="utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
                ev = Event(ts=float(obj.get("ts", 0.0)), type=str(obj.get("type")), data=obj.get("data") or {})
            except (ValueError, TypeError, AttributeError):
                continue
            if event_type and not ev.type.startswith(event_type):
                continue
            out.append(ev)
        return out
