from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_dir

from ..errors import ConfigurationError
from .models import AppConfig

APP_NAME = "pyhecate"
CONFIG_NAME = "pyhecate.yaml"

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def _candidate_paths(cwd: Path) -> list[Path]:
    # project-level; first match wins
    return [cwd / CONFIG_NAME, cwd / f".{CONFIG_NAME}"]


def _global_candidate_paths() -> list[Path]:
    return [Path(user_config_dir(APP_NAME)) / CONFIG_NAME]


def expand_env_placeholders(value: Any) -> Any:
    """Replace ``${VAR}`` in every string of a loaded YAML tree."""
    if isinstance(value, str):
        def repl(m: re.Match) -> str:
            var = m.group(1)
            val = os.getenv(var)
            if val is None:
                raise ConfigurationError(f"Config placeholder '${{{var}}}' not found in environment.")
            return val

        return _ENV_PATTERN.sub(repl, value)
    if isinstance(value, dict):
        return {k: expand_env_placeholders(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_placeholders(v) for v in value]
    return value


def _load_yaml(p: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{p} must contain a mapping at the top level.")
    return expand_env_placeholders(data)


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dicts(out[k], v)
        else:
            out[k] = v
    return out


def load_config(
    *,
    cwd: Path,
    explicit_path: Path | None = None,
    global_paths: list[Path] | None = None,
) -> AppConfig:
    """Load the app config.

    Merge order: global < project < explicit_path. A missing explicit file
    is an error; missing global/project files are not.
    """
    merged: dict[str, Any] = {}
    loaded: list[Path] = []

    for p in global_paths if global_paths is not None else _global_candidate_paths():
        if p.is_file():
            merged = _merge_dicts(merged, _load_yaml(p))
            loaded.append(p)

    for p in _candidate_paths(cwd):
        if p.is_file():
            merged = _merge_dicts(merged, _load_yaml(p))
            loaded.append(p)
            break

    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if not p.is_file():
            raise ConfigurationError(f"Config YAML not found: {p}")
        merged = _merge_dicts(merged, _load_yaml(p))
        loaded.append(p)

    cfg = AppConfig.from_obj(merged)
    cfg.loaded_from = loaded
    return cfg
