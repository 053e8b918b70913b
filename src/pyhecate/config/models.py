from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ConfigurationError
from ..llm.client import DEFAULT_URL
from ..tools.executor import DEFAULT_TIMEOUT
from ..agent.loop import DEFAULT_MAX_ROUNDS

DEFAULT_SYSTEM_PROMPT = """You are Hecate, a terminal assistant with tool access.
Rules:
- Use the provided tools to inspect files, run commands and query the mesh when needed.
- Prefer read_file/grep_search/list_directory before editing files.
- Do not fabricate file contents or command outputs: use tools.
- Keep tool arguments minimal and correct.
"""


def _expect(obj: Any, typ: type | tuple[type, ...], key: str) -> Any:
    if not isinstance(obj, typ):
        names = typ.__name__ if isinstance(typ, type) else "/".join(t.__name__ for t in typ)
        raise ConfigurationError(f"'{key}' must be a {names}")
    return obj


@dataclass
class DaemonConfig:
    url: str = DEFAULT_URL
    socket: str | None = None
    timeout: float = 30.0

    @staticmethod
    def from_obj(obj: Any) -> "DaemonConfig":
        cfg = DaemonConfig()
        if obj is None:
            return cfg
        _expect(obj, dict, "daemon")
        if "url" in obj:
            cfg.url = str(_expect(obj["url"], str, "daemon.url"))
        if obj.get("socket"):
            cfg.socket = str(Path(str(obj["socket"])).expanduser())
        if "timeout" in obj:
            cfg.timeout = float(_expect(obj["timeout"], (int, float), "daemon.timeout"))
        return cfg


@dataclass
class ToolsConfig:
    enabled: bool = True
    schema_format: str = "anthropic"
    timeout: float = DEFAULT_TIMEOUT

    @staticmethod
    def from_obj(obj: Any) -> "ToolsConfig":
        cfg = ToolsConfig()
        if obj is None:
            return cfg
        _expect(obj, dict, "tools")
        if "enabled" in obj:
            cfg.enabled = bool(obj["enabled"])
        if "schema_format" in obj:
            fmt = str(obj["schema_format"]).strip().lower()
            if fmt not in {"anthropic", "openai"}:
                raise ConfigurationError("'tools.schema_format' must be 'anthropic' or 'openai'")
            cfg.schema_format = fmt
        if "timeout" in obj:
            cfg.timeout = float(_expect(obj["timeout"], (int, float), "tools.timeout"))
        return cfg


@dataclass
class AppConfig:
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    model: str | None = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    max_rounds: int = DEFAULT_MAX_ROUNDS
    poll_interval: float = 0.01
    # raw permissions section; turned into Permissions by the app context
    permissions: dict[str, Any] = field(default_factory=dict)

    loaded_from: list[Path] = field(default_factory=list)

    @staticmethod
    def from_obj(obj: dict[str, Any]) -> "AppConfig":
        cfg = AppConfig()
        cfg.daemon = DaemonConfig.from_obj(obj.get("daemon"))
        cfg.tools = ToolsConfig.from_obj(obj.get("tools"))
        if obj.get("model") is not None:
            cfg.model = str(_expect(obj["model"], str, "model")).strip() or None
        if obj.get("system_prompt") is not None:
            cfg.system_prompt = str(_expect(obj["system_prompt"], str, "system_prompt"))
        if "max_rounds" in obj:
            n = _expect(obj["max_rounds"], int, "max_rounds")
            if n < 1:
                raise ConfigurationError("'max_rounds' must be at least 1")
            cfg.max_rounds = n
        if "poll_interval" in obj:
            cfg.poll_interval = float(_expect(obj["poll_interval"], (int, float), "poll_interval"))
        if obj.get("permissions") is not None:
            cfg.permissions = dict(_expect(obj["permissions"], dict, "permissions"))
        return cfg
