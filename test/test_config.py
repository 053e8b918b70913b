from __future__ import annotations

import pytest

from pyhecate.config.loader import expand_env_placeholders, load_config
from pyhecate.config.models import DEFAULT_SYSTEM_PROMPT
from pyhecate.errors import ConfigurationError
from pyhecate.llm.client import DEFAULT_URL
from pyhecate.tools.permissions import PermissionLevel, Permissions


def test_defaults_without_files(tmp_path):
    cfg = load_config(cwd=tmp_path, global_paths=[])
    assert cfg.daemon.url == DEFAULT_URL
    assert cfg.daemon.socket is None
    assert cfg.model is None
    assert cfg.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert cfg.tools.enabled
    assert cfg.tools.timeout == 60.0
    assert cfg.loaded_from == []


def test_merge_order(tmp_path):
    glob = tmp_path / "global.yaml"
    glob.write_text("model: global-model\ndaemon:\n  url: http://g:1\n  timeout: 5\n")
    project = tmp_path / "proj"
    project.mkdir()
    (project / "pyhecate.yaml").write_text("daemon:\n  url: http://p:2\ntools:\n  schema_format: openai\n")
    explicit = tmp_path / "explicit.yaml"
    explicit.write_text("model: explicit-model\n")

    cfg = load_config(cwd=project, explicit_path=explicit, global_paths=[glob])
    assert cfg.model == "explicit-model"
    assert cfg.daemon.url == "http://p:2"
    # nested keys merge instead of replacing the whole section
    assert cfg.daemon.timeout == 5
    assert cfg.tools.schema_format == "openai"
    assert cfg.loaded_from == [glob, project / "pyhecate.yaml", explicit.resolve()]


def test_hidden_project_file(tmp_path):
    (tmp_path / ".pyhecate.yaml").write_text("model: hidden\n")
    assert load_config(cwd=tmp_path, global_paths=[]).model == "hidden"


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(cwd=tmp_path, explicit_path=tmp_path / "nope.yaml", global_paths=[])


def test_env_placeholders(tmp_path, monkeypatch):
    monkeypatch.setenv("HECATE_SOCK", "/run/hecate.sock")
    (tmp_path / "pyhecate.yaml").write_text("daemon:\n  socket: ${HECATE_SOCK}\n")
    cfg = load_config(cwd=tmp_path, global_paths=[])
    assert cfg.daemon.socket == "/run/hecate.sock"


def test_missing_env_placeholder(monkeypatch):
    monkeypatch.delenv("PYHECATE_UNSET_VAR", raising=False)
    with pytest.raises(ConfigurationError, match="PYHECATE_UNSET_VAR"):
        expand_env_placeholders({"a": ["${PYHECATE_UNSET_VAR}"]})


@pytest.mark.parametrize(
    "body,message",
    [
        ("- a\n- b\n", "mapping"),
        ("daemon: [1]\n", "daemon"),
        ("max_rounds: 0\n", "max_rounds"),
        ("tools:\n  schema_format: xml\n", "schema_format"),
        ("model: [\n", "Invalid YAML"),
    ],
)
def test_invalid_config(tmp_path, body, message):
    (tmp_path / "pyhecate.yaml").write_text(body)
    with pytest.raises(ConfigurationError, match=message):
        load_config(cwd=tmp_path, global_paths=[])


def test_permissions_section(tmp_path):
    (tmp_path / "pyhecate.yaml").write_text(
        "permissions:\n"
        "  require_approval_by_default: false\n"
        "  tools:\n"
        "    run_command: deny\n"
        "  denied_paths:\n"
        "    - ~/private\n"
    )
    cfg = load_config(cwd=tmp_path, global_paths=[])
    perms = Permissions.from_config(cfg.permissions)
    assert perms.tools["run_command"] == PermissionLevel.DENY
    assert perms.denied_paths == ["~/private"]
    assert not perms.require_approval_by_default
