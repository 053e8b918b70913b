from __future__ import annotations
import os
from pathlib import Path

from ..tools.base import ToolError


def resolve_path(cwd: str | Path, path_str: str) -> Path:
    """Expand ``~`` and anchor relative paths at the call's working directory.

    Access control is the permission engine's job; this only normalizes.
    """
    if not path_str:
        raise ToolError("path is required")
    p = Path(os.path.expanduser(path_str))
    if not p.is_absolute():
        p = Path(cwd) / p
    return Path(os.path.normpath(p))


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def truncate(text: str, limit: int, note: str = "truncated") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... ({note}, {len(text) - limit} more chars)"
