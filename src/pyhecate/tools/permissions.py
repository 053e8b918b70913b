from __future__ import annotations

import os
import shlex
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable

from .base import ToolCategory

APP_NAME = "pyhecate"


class PermissionLevel(IntEnum):
    """Ordered so that min() tightens: DENY < ASK < ALLOW."""

    DENY = 0
    ASK = 1
    ALLOW = 2

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> "PermissionLevel":
        if isinstance(value, PermissionLevel):
            return value
        if isinstance(value, bool):
            return cls.ALLOW if value else cls.DENY
        s = str(value or "").strip().lower()
        if s in {"allow", "yes", "true"}:
            return cls.ALLOW
        if s in {"deny", "no", "false"}:
            return cls.DENY
        return cls.ASK


def default_denied_paths() -> list[str]:
    return [
        "~/.ssh",
        "~/.gnupg",
        "~/.aws",
        f"~/.config/{APP_NAME}/secrets*",
        "/etc/passwd",
        "/etc/shadow",
    ]


def default_allowed_commands() -> list[str]:
    return [
        "go", "npm", "cargo", "make", "git",
        "ls", "pwd", "cat", "head", "tail", "grep", "find", "rg", "fd",
        "rebar3", "mix", "elixir", "erl",
        "python", "python3", "pip",
        "node", "yarn", "pnpm",
        "docker", "kubectl",
    ]


def default_denied_commands() -> list[str]:
    return [
        "rm -rf /",
        "rm -rf /*",
        "sudo rm",
        "sudo dd",
        ":(){ :|:& };:",
        "mkfs",
        "curl | sh",
        "wget | sh",
        "curl | bash",
        "wget | bash",
    ]


_PATH_CATEGORIES = {ToolCategory.FILESYSTEM, ToolCategory.CODE_EXPLORE}
SHELL_TOOL = "run_command"


def _expand(path: str, cwd: str | None = None) -> str:
    p = os.path.expanduser(path)
    if not os.path.isabs(p):
        p = os.path.join(cwd or os.getcwd(), p)
    return os.path.normpath(p)


def _path_candidates(raw: str, cwd: str | None) -> set[str]:
    p = _expand(raw, cwd)
    # symlinks must not sidestep the deny list
    return {p, os.path.realpath(p)}


def match_path(path: str, pattern: str) -> bool:
    """Match an absolute path against a configured pattern.

    A trailing ``*`` makes the pattern a plain prefix; otherwise the path must
    equal the pattern or live under it.
    """
    if pattern.endswith("*"):
        prefix = pattern[:-1]
        if not prefix:
            return True
        expanded = _expand(prefix)
        # "dir/*" covers entries of dir only, not siblings sharing its name
        if prefix.endswith(("/", os.sep)) and not expanded.endswith(os.sep):
            expanded += os.sep
        return path.startswith(expanded)
    base = _expand(pattern)
    if path == base:
        return True
    return path.startswith(base.rstrip(os.sep) + os.sep)


@dataclass
class Permissions:
    tools: dict[str, PermissionLevel] = field(default_factory=dict)
    allowed_paths: list[str] = field(default_factory=list)
    denied_paths: list[str] = field(default_factory=default_denied_paths)
    allowed_commands: list[str] = field(default_factory=default_allowed_commands)
    denied_commands: list[str] = field(default_factory=default_denied_commands)
    require_approval_by_default: bool = True

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._grants: set[str] = set()
        self._disabled: set[str] = set()
        self.tools = {k: PermissionLevel.parse(v) for k, v in self.tools.items()}

    @staticmethod
    def from_config(obj: dict[str, Any] | None) -> "Permissions":
        """Build from the ``permissions`` config section; absent keys keep defaults."""
        p = Permissions()
        if not obj:
            return p
        tools = obj.get("tools") or {}
        if isinstance(tools, dict):
            for name, level in tools.items():
                p.tools[str(name)] = PermissionLevel.parse(level)
        for key in ("allowed_paths", "denied_paths", "allowed_commands", "denied_commands"):
            if key in obj and isinstance(obj[key], list):
                setattr(p, key, [str(x) for x in obj[key]])
        if "require_approval_by_default" in obj:
            p.require_approval_by_default = bool(obj["require_approval_by_default"])
        return p

    # -------- decision --------

    def check(
        self,
        tool_name: str,
        args: dict[str, Any] | None = None,
        *,
        requires_approval: bool = False,
        category: ToolCategory | str | None = None,
        cwd: str | None = None,
    ) -> PermissionLevel:
        args = args or {}
        level = self._base_level(tool_name, requires_approval)

        cat = ToolCategory(category) if category else None
        if cat in _PATH_CATEGORIES:
            level = min(level, self._check_path(args.get("path"), cwd))
        if tool_name == SHELL_TOOL:
            level = min(level, self._check_command(args.get("command")))
        return level

    def _base_level(self, tool_name: str, requires_approval: bool) -> PermissionLevel:
        with self._lock:
            if tool_name in self._grants:
                return PermissionLevel.ALLOW
            override = self.tools.get(tool_name)
        if override is not None:
            if override == PermissionLevel.ALLOW and requires_approval:
                return PermissionLevel.ASK
            return override
        if requires_approval:
            return PermissionLevel.ASK
        if self.require_approval_by_default:
            return PermissionLevel.ASK
        return PermissionLevel.ALLOW

    def _check_path(self, raw: Any, cwd: str | None) -> PermissionLevel:
        if not isinstance(raw, str) or not raw:
            return PermissionLevel.ALLOW
        candidates = _path_candidates(raw, cwd)
        if self._denied(candidates):
            return PermissionLevel.DENY
        if self.allowed_paths:
            if not any(match_path(c, pat) for c in candidates for pat in self.allowed_paths):
                return PermissionLevel.ASK
        return PermissionLevel.ALLOW

    def _denied(self, candidates: set[str]) -> bool:
        return any(match_path(c, pattern) for pattern in self.denied_paths for c in candidates)

    def is_denied_path(self, path: str, cwd: str | None = None) -> bool:
        """True when the path, or what it resolves to, hits the deny list."""
        return self._denied(_path_candidates(path, cwd))

    def _check_command(self, raw: Any) -> PermissionLevel:
        if not isinstance(raw, str) or not raw.strip():
            return PermissionLevel.DENY
        for bad in self.denied_commands:
            if bad and bad in raw:
                return PermissionLevel.DENY
        return PermissionLevel.ALLOW

    def is_known_command(self, command: str) -> bool:
        """True when the command's executable is on the allow list.

        Only used to frame the approval prompt; it never grants anything.
        """
        try:
            parts = shlex.split(command)
        except ValueError:
            parts = command.split()
        if not parts:
            return False
        return os.path.basename(parts[0]) in self.allowed_commands

    # -------- session grants --------

    def grant_for_session(self, tool_name: str) -> None:
        with self._lock:
            self._grants.add(tool_name)

    def session_granted(self, tool_name: str) -> bool:
        with self._lock:
            return tool_name in self._grants

    def revoke_session_grant(self, tool_name: str) -> None:
        with self._lock:
            self._grants.discard(tool_name)

    def clear_session_grants(self) -> None:
        with self._lock:
            self._grants.clear()

    def session_grants(self) -> list[str]:
        with self._lock:
            return sorted(self._grants)

    # -------- tool-level management --------

    def set_tool_permission(self, tool_name: str, level: PermissionLevel | str) -> None:
        with self._lock:
            self.tools[tool_name] = PermissionLevel.parse(level)

    def disable_tool(self, tool_name: str) -> None:
        with self._lock:
            self.tools[tool_name] = PermissionLevel.DENY
            self._disabled.add(tool_name)
            self._grants.discard(tool_name)

    def enable_tool(self, tool_name: str) -> None:
        with self._lock:
            self.tools.pop(tool_name, None)
            self._disabled.discard(tool_name)
            self._grants.discard(tool_name)

    def is_disabled(self, tool_name: str) -> bool:
        with self._lock:
            return tool_name in self._disabled or self.tools.get(tool_name) == PermissionLevel.DENY

    def disabled_tools(self) -> list[str]:
        with self._lock:
            names: Iterable[str] = self._disabled | {n for n, lv in self.tools.items() if lv == PermissionLevel.DENY}
            return sorted(names)
