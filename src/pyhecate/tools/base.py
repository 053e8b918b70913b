from __future__ import annotations
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class ToolCategory(str, Enum):
    FILESYSTEM = "filesystem"
    CODE_EXPLORE = "code_explore"
    WEB = "web"
    MESH = "mesh"
    SYSTEM = "system"

    @property
    def display_name(self) -> str:
        return _CATEGORY_NAMES.get(self, self.value)


_CATEGORY_NAMES = {
    ToolCategory.FILESYSTEM: "File System",
    ToolCategory.CODE_EXPLORE: "Code Exploration",
    ToolCategory.WEB: "Web",
    ToolCategory.MESH: "Mesh",
    ToolCategory.SYSTEM: "System",
}


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]   # JSONSchema
    category: ToolCategory
    requires_approval: bool = False


@dataclass
class ToolContext:
    cwd: str
    # Optional session id for tools that want to correlate output with a transcript
    session_id: str | None = None
    # Set when the executor gives up on the call (deadline or cancellation)
    cancelled: threading.Event = field(default_factory=threading.Event)
    timeout: float | None = None
    # Deny-list predicate for paths a recursive walk reaches
    denied: Callable[[str], bool] | None = None

    def is_denied(self, path: str | os.PathLike) -> bool:
        return self.denied is not None and self.denied(os.fspath(path))


class ToolError(RuntimeError):
    """Expected handler failure; the message is shown to the model as-is."""


Handler = Callable[[ToolContext, dict[str, Any]], str]


def object_schema(properties: dict[str, dict[str, Any]], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


def string(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


def integer(description: str) -> dict[str, Any]:
    return {"type": "integer", "description": description}


def boolean(description: str) -> dict[str, Any]:
    return {"type": "boolean", "description": description}


def int_arg(args: dict[str, Any], key: str, default: int) -> int:
    """Lenient integer coercion; models often send numbers as strings."""
    v = args.get(key)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ToolError(f"invalid arguments: {key} must be an integer")


def str_arg(args: dict[str, Any], key: str) -> str:
    v = args.get(key)
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)
