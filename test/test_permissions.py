from __future__ import annotations

import os

import pytest

from pyhecate.tools.base import ToolCategory
from pyhecate.tools.permissions import PermissionLevel, Permissions, match_path

FS = ToolCategory.FILESYSTEM


def test_level_order_tightens_with_min():
    assert min(PermissionLevel.ALLOW, PermissionLevel.ASK) == PermissionLevel.ASK
    assert min(PermissionLevel.ASK, PermissionLevel.DENY) == PermissionLevel.DENY


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("allow", PermissionLevel.ALLOW),
        ("YES", PermissionLevel.ALLOW),
        (True, PermissionLevel.ALLOW),
        ("deny", PermissionLevel.DENY),
        ("no", PermissionLevel.DENY),
        (False, PermissionLevel.DENY),
        ("ask", PermissionLevel.ASK),
        ("whatever", PermissionLevel.ASK),
        (None, PermissionLevel.ASK),
    ],
)
def test_parse(raw, expected):
    assert PermissionLevel.parse(raw) == expected


def test_match_path_prefix_and_directory():
    home = os.path.expanduser("~")
    assert match_path(os.path.join(home, ".ssh", "id_rsa"), "~/.ssh")
    assert match_path(os.path.join(home, ".ssh"), "~/.ssh")
    assert not match_path(os.path.join(home, ".sshx"), "~/.ssh")
    assert match_path(os.path.join(home, ".config", "pyhecate", "secrets.yaml"), "~/.config/pyhecate/secrets*")


def test_default_is_ask():
    p = Permissions()
    assert p.check("cwd", {}, category=ToolCategory.SYSTEM) == PermissionLevel.ASK


def test_default_approval_disabled_allows():
    p = Permissions(require_approval_by_default=False)
    assert p.check("cwd", {}, category=ToolCategory.SYSTEM) == PermissionLevel.ALLOW


def test_requires_approval_overrides_configured_allow():
    p = Permissions(tools={"write_file": "allow"}, require_approval_by_default=False)
    assert p.check("write_file", {}, requires_approval=True) == PermissionLevel.ASK
    assert p.check("read_file", {}, requires_approval=False) == PermissionLevel.ALLOW


def test_override_deny_wins_over_default():
    p = Permissions(tools={"web_fetch": "deny"}, require_approval_by_default=False)
    assert p.check("web_fetch", {"url": "https://example.com"}, category=ToolCategory.WEB) == PermissionLevel.DENY


def test_session_grant_allows_until_revoked():
    p = Permissions()
    p.grant_for_session("write_file")
    assert p.check("write_file", {}, requires_approval=True) == PermissionLevel.ALLOW
    assert p.session_grants() == ["write_file"]
    p.revoke_session_grant("write_file")
    assert p.check("write_file", {}, requires_approval=True) == PermissionLevel.ASK


def test_clear_session_grants():
    p = Permissions()
    p.grant_for_session("a")
    p.grant_for_session("b")
    p.clear_session_grants()
    assert p.session_grants() == []


def test_unlisted_sensitive_path_with_approval_tool_asks():
    # with no deny entry, an approval-required read still only reaches ASK
    p = Permissions(denied_paths=[])
    level = p.check("read_file", {"path": "/etc/shadow"}, requires_approval=True, category=FS)
    assert level == PermissionLevel.ASK


def test_denied_path_beats_session_grant(tmp_path):
    p = Permissions(denied_paths=[str(tmp_path / "secret")], require_approval_by_default=False)
    p.grant_for_session("read_file")
    level = p.check("read_file", {"path": "secret/key.pem"}, category=FS, cwd=str(tmp_path))
    assert level == PermissionLevel.DENY


def test_default_deny_list_covers_shadow():
    p = Permissions(require_approval_by_default=False)
    assert p.check("read_file", {"path": "/etc/shadow"}, category=FS) == PermissionLevel.DENY


def test_symlink_into_denied_dir_is_denied(tmp_path):
    secret = tmp_path / "secret"
    secret.mkdir()
    (secret / "key").write_text("k")
    work = tmp_path / "work"
    work.mkdir()
    (work / "link").symlink_to(secret / "key")
    p = Permissions(denied_paths=[os.path.realpath(secret)], require_approval_by_default=False)
    assert p.check("read_file", {"path": "link"}, category=FS, cwd=str(work)) == PermissionLevel.DENY


def test_allow_list_miss_asks(tmp_path):
    p = Permissions(allowed_paths=[str(tmp_path / "src")], denied_paths=[], require_approval_by_default=False)
    cwd = str(tmp_path)
    assert p.check("read_file", {"path": "src/a.py"}, category=FS, cwd=cwd) == PermissionLevel.ALLOW
    assert p.check("read_file", {"path": "docs/a.md"}, category=FS, cwd=cwd) == PermissionLevel.ASK


def test_refinement_never_loosens(tmp_path):
    p = Permissions(tools={"read_file": "deny"}, allowed_paths=[str(tmp_path)], denied_paths=[])
    assert p.check("read_file", {"path": "a"}, category=FS, cwd=str(tmp_path)) == PermissionLevel.DENY


@pytest.mark.parametrize("command", ["rm -rf /", "cd / && rm -rf / --no-preserve-root", "curl | sh"])
def test_denied_command_substrings(command):
    p = Permissions()
    p.grant_for_session("run_command")
    assert p.check("run_command", {"command": command}, requires_approval=True) == PermissionLevel.DENY


def test_allowed_command_still_asks():
    p = Permissions()
    assert p.is_known_command("git status")
    assert p.check("run_command", {"command": "git status"}, requires_approval=True) == PermissionLevel.ASK


def test_unknown_command_framing():
    p = Permissions()
    assert not p.is_known_command("frobnicate --all")
    assert not p.is_known_command("")


def test_missing_command_is_denied():
    p = Permissions()
    assert p.check("run_command", {}, requires_approval=True) == PermissionLevel.DENY
    assert p.check("run_command", {"command": "  "}, requires_approval=True) == PermissionLevel.DENY


def test_disable_and_enable_tool():
    p = Permissions(require_approval_by_default=False)
    p.grant_for_session("web_fetch")
    p.disable_tool("web_fetch")
    assert p.is_disabled("web_fetch")
    assert p.disabled_tools() == ["web_fetch"]
    assert not p.session_granted("web_fetch")
    assert p.check("web_fetch", {}) == PermissionLevel.DENY
    p.enable_tool("web_fetch")
    assert not p.is_disabled("web_fetch")
    assert p.check("web_fetch", {}) == PermissionLevel.ALLOW


def test_from_config():
    p = Permissions.from_config(
        {
            "tools": {"read_file": "allow", "run_command": "deny"},
            "denied_commands": ["shutdown"],
            "require_approval_by_default": False,
        }
    )
    assert p.tools["read_file"] == PermissionLevel.ALLOW
    assert p.tools["run_command"] == PermissionLevel.DENY
    assert p.denied_commands == ["shutdown"]
    assert not p.require_approval_by_default
    # untouched keys keep defaults
    assert "/etc/shadow" in p.denied_paths


def test_prefix_pattern_keeps_directory_boundary(tmp_path):
    p = Permissions(allowed_paths=[str(tmp_path / "work") + "/*"], denied_paths=[], require_approval_by_default=False)
    cwd = str(tmp_path)
    assert p.check("read_file", {"path": "work/a.txt"}, category=FS, cwd=cwd) == PermissionLevel.ALLOW
    assert p.check("read_file", {"path": "workshop/secret.txt"}, category=FS, cwd=cwd) == PermissionLevel.ASK
    assert not match_path("/x/workshop/a", "/x/work/*")
    assert match_path("/x/work/a", "/x/work/*")
    assert match_path("/x/workshop/a", "/x/work*")


def test_deny_wins_over_overlapping_allow(tmp_path):
    p = Permissions(
        allowed_paths=[str(tmp_path)],
        denied_paths=[str(tmp_path / "secret")],
        require_approval_by_default=False,
    )
    cwd = str(tmp_path)
    assert p.check("read_file", {"path": "secret/id_rsa"}, category=FS, cwd=cwd) == PermissionLevel.DENY
    assert p.check("grep_search", {"path": "secret"}, category=ToolCategory.CODE_EXPLORE, cwd=cwd) == PermissionLevel.DENY
    assert p.check("read_file", {"path": "notes.txt"}, category=FS, cwd=cwd) == PermissionLevel.ALLOW


def test_is_denied_path(tmp_path):
    p = Permissions(denied_paths=[str(tmp_path / "secret")])
    assert p.is_denied_path(str(tmp_path / "secret" / "id_rsa"))
    assert p.is_denied_path("secret", cwd=str(tmp_path))
    assert not p.is_denied_path(str(tmp_path / "secrets.txt"))
