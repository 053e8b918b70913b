from __future__ import annotations
import threading
from typing import Any, Optional

from .base import Handler, ToolCategory, ToolSpec


class ToolCatalog:
    """Thread-safe name -> (spec, handler) table.

    Tool families register at start-up while an agent loop may already be
    reading, so every access goes through the lock. Re-registering a name
    replaces the entry but keeps its original listing position.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tools: dict[str, tuple[ToolSpec, Handler]] = {}
        self._order: list[str] = []

    def register(self, spec: ToolSpec, handler: Handler) -> None:
        with self._lock:
            if spec.name not in self._tools:
                self._order.append(spec.name)
            self._tools[spec.name] = (spec, handler)

    def get(self, name: str) -> Optional[tuple[ToolSpec, Handler]]:
        """Return (spec, handler) if registered, otherwise None.

        Models hallucinate tool names; callers must treat None as a normal
        outcome rather than an error.
        """
        with self._lock:
            return self._tools.get(name)

    def all(self) -> list[ToolSpec]:
        with self._lock:
            return [self._tools[n][0] for n in self._order]

    def by_category(self) -> dict[ToolCategory, list[ToolSpec]]:
        out: dict[ToolCategory, list[ToolSpec]] = {}
        for spec in self.all():
            out.setdefault(spec.category, []).append(spec)
        return out

    def names(self) -> list[str]:
        with self._lock:
            return list(self._order)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools

    def to_anthropic_schema(self) -> list[dict[str, Any]]:
        return [
            {"name": s.name, "description": s.description, "input_schema": s.parameters}
            for s in self.all()
        ]

    def to_openai_schema(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": s.name,
                    "description": s.description,
                    "parameters": s.parameters,
                },
            }
            for s in self.all()
        ]
