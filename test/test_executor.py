from __future__ import annotations

import threading
import time

import pytest

from pyhecate.llm.types import ToolCall
from pyhecate.tools.base import ToolCategory, ToolError
from pyhecate.tools.builtin import register_builtin_tools
from pyhecate.tools.builtin_tools import code_explore
from pyhecate.tools.builtin_tools.system import RunCommandTool
from pyhecate.tools.executor import (
    ApprovalDecision,
    Completed,
    NeedsApproval,
    Ready,
    ToolExecutor,
    decode_arguments,
)
from pyhecate.tools.permissions import Permissions
from pyhecate.tools.registry import ToolCatalog

from conftest import Recorder, echo_spec


def make_executor(*, handler=None, approval=None, permissions=None, timeout=5.0, spec=None, events=None):
    cat = ToolCatalog()
    cat.register(spec or echo_spec(), handler or Recorder())
    on_event = (lambda t, d: events.append((t, d))) if events is not None else None
    return ToolExecutor(
        cat,
        permissions or Permissions(require_approval_by_default=False),
        approval_handler=approval,
        timeout=timeout,
        on_event=on_event,
    )


def test_decode_arguments():
    assert decode_arguments(None) == {}
    assert decode_arguments("") == {}
    assert decode_arguments('{"a": 1}') == {"a": 1}
    assert decode_arguments({"a": 1}) == {"a": 1}
    with pytest.raises(ValueError):
        decode_arguments("[1, 2]")
    with pytest.raises(ValueError):
        decode_arguments("{not json")


def test_allowed_call_runs_handler(recorder):
    ex = make_executor(handler=recorder)
    res = ex.execute(ToolCall("c1", "echo", {"text": "hi"}))
    assert res.tool_call_id == "c1"
    assert not res.is_error
    assert res.content == "ok"
    assert recorder.calls == [{"text": "hi"}]


def test_string_arguments_are_decoded(recorder):
    ex = make_executor(handler=recorder)
    res = ex.execute(ToolCall("c1", "echo", '{"text": "hi"}'))
    assert not res.is_error
    assert recorder.calls == [{"text": "hi"}]


def test_unknown_tool():
    ex = make_executor()
    res = ex.execute(ToolCall("c1", "nope", {}))
    assert res.is_error
    assert res.content == "Unknown tool: nope"


def test_invalid_arguments(recorder):
    ex = make_executor(handler=recorder)
    res = ex.execute(ToolCall("c1", "echo", "{broken"))
    assert res.is_error
    assert res.content.startswith("invalid arguments:")
    assert recorder.calls == []


def test_policy_denial_never_runs_handler(recorder):
    perms = Permissions(tools={"echo": "deny"})
    ex = make_executor(handler=recorder, permissions=perms)
    res = ex.execute(ToolCall("c1", "echo", {}))
    assert res.is_error
    assert res.content == "Tool 'echo' execution denied by policy"
    assert recorder.calls == []


def test_destructive_command_denied(recorder):
    spec = echo_spec("run_command", requires_approval=True)
    asked = []
    ex = make_executor(handler=recorder, spec=spec, permissions=Permissions(), approval=lambda s, c: asked.append(c))
    res = ex.execute(ToolCall("c1", "run_command", {"command": "rm -rf /"}))
    assert res.is_error
    assert "denied by policy" in res.content
    assert recorder.calls == []
    assert asked == []


def test_ask_without_handler_is_an_error(recorder):
    ex = make_executor(handler=recorder, spec=echo_spec(requires_approval=True))
    res = ex.execute(ToolCall("c1", "echo", {}))
    assert res.is_error
    assert res.content == "Tool 'echo' requires approval but no approval handler is configured"
    assert recorder.calls == []
    assert ex.pending() == []


def test_user_denial(recorder):
    ex = make_executor(
        handler=recorder,
        spec=echo_spec("read_file", requires_approval=True, category=ToolCategory.FILESYSTEM),
        permissions=Permissions(denied_paths=[]),
        approval=lambda s, c: ApprovalDecision(approved=False),
    )
    res = ex.execute(ToolCall("c1", "read_file", {"path": "/etc/shadow"}))
    assert res.is_error
    assert res.content == "Tool execution denied by user"
    assert recorder.calls == []


def test_approval_for_session_grants(recorder):
    perms = Permissions()
    seen = []

    def approve(spec, call):
        seen.append(call.id)
        return ApprovalDecision(approved=True, grant_for_session=True)

    ex = make_executor(handler=recorder, spec=echo_spec(requires_approval=True), permissions=perms, approval=approve)
    assert not ex.execute(ToolCall("c1", "echo", {})).is_error
    assert perms.session_granted("echo")
    assert not ex.execute(ToolCall("c2", "echo", {})).is_error
    assert seen == ["c1"]
    assert len(recorder.calls) == 2


def test_handler_error_text():
    def boom(ctx, args):
        raise ToolError("disk on fire")

    ex = make_executor(handler=boom)
    res = ex.execute(ToolCall("c1", "echo", {}))
    assert res.is_error
    assert res.content == "disk on fire"


def test_timeout_is_an_error_result():
    release = threading.Event()

    def slow(ctx, args):
        release.wait(2)
        return "late"

    ex = make_executor(handler=slow, timeout=0.05)
    started = time.monotonic()
    res = ex.execute(ToolCall("c1", "echo", {}))
    release.set()
    assert res.is_error
    assert res.content == "Tool 'echo' timed out after 0.05s"
    assert time.monotonic() - started < 1.5


def test_begin_resume_continuation(recorder):
    ex = make_executor(handler=recorder, spec=echo_spec(requires_approval=True))
    step = ex.begin(ToolCall("c1", "echo", {"text": "x"}))
    assert isinstance(step, NeedsApproval)
    assert ex.pending() == ["c1"]
    assert recorder.calls == []

    step = ex.resume("c1", ApprovalDecision(approved=True))
    assert isinstance(step, Ready)
    assert ex.pending() == []
    res = ex.run(step.call)
    assert res.content == "ok"

    with pytest.raises(KeyError):
        ex.resume("c1", ApprovalDecision(approved=True))


def test_begin_completes_immediately_on_deny():
    ex = make_executor(permissions=Permissions(tools={"echo": "deny"}))
    step = ex.begin(ToolCall("c1", "echo", {}))
    assert isinstance(step, Completed)
    assert step.result.is_error


def test_discard_drops_parked_call():
    ex = make_executor(spec=echo_spec(requires_approval=True))
    ex.begin(ToolCall("c1", "echo", {}))
    ex.discard("c1")
    assert ex.pending() == []


def test_execute_all_is_sequential_and_ordered(tmp_path):
    order: list[str] = []
    active = []

    def handler(ctx, args):
        active.append(1)
        assert len(active) == 1
        order.append(args["text"])
        time.sleep(0.01)
        active.pop()
        return args["text"]

    ex = make_executor(handler=handler)
    calls = [ToolCall(f"c{i}", "echo", {"text": str(i)}) for i in range(4)]
    results = ex.execute_all(calls)
    assert [r.tool_call_id for r in results] == ["c0", "c1", "c2", "c3"]
    assert order == ["0", "1", "2", "3"]


def test_events_are_emitted(recorder):
    events = []
    ex = make_executor(
        handler=recorder,
        spec=echo_spec(requires_approval=True),
        approval=lambda s, c: ApprovalDecision(approved=True),
        events=events,
    )
    ex.execute(ToolCall("c1", "echo", {"text": "x"}))
    assert [t for t, _ in events] == ["tool.call", "tool.approval", "tool.result"]
    assert events[1][1]["approved"] is True
    assert events[2][1]["is_error"] is False


def test_timed_out_command_leaves_no_side_effect(tmp_path):
    cat = ToolCatalog()
    tool = RunCommandTool()
    cat.register(tool.spec, tool.execute)
    ex = ToolExecutor(
        cat,
        Permissions(),
        approval_handler=lambda spec, call: ApprovalDecision(approved=True),
        timeout=1,
        cwd=str(tmp_path),
    )
    res = ex.execute(ToolCall("c1", "run_command", {"command": "sleep 2; touch marker", "timeout": 10}))
    assert "timed out" in res.content
    time.sleep(2.5)
    assert not (tmp_path / "marker").exists()


def test_cancel_token_reaches_handler():
    token = threading.Event()

    def waits(ctx, args):
        return "stopped" if ctx.cancelled.wait(5) else "finished"

    ex = make_executor(handler=waits)
    threading.Timer(0.1, token.set).start()
    res = ex.run(ToolCall("c1", "echo", {}), cancelled=token)
    assert res.content == "stopped"


def test_cancelled_before_start_never_runs(recorder):
    token = threading.Event()
    token.set()
    ex = make_executor(handler=recorder)
    res = ex.run(ToolCall("c1", "echo", {"text": "x"}), cancelled=token)
    assert res.is_error
    assert res.content == "Tool 'echo' cancelled"
    assert recorder.calls == []


def test_stuck_handlers_do_not_starve_later_calls(recorder):
    release = threading.Event()

    def stuck(ctx, args):
        release.wait(5)
        return "late"

    cat = ToolCatalog()
    cat.register(echo_spec("stuck"), stuck)
    cat.register(echo_spec(), recorder)
    ex = ToolExecutor(cat, Permissions(require_approval_by_default=False), timeout=0.2)
    try:
        for i in range(6):
            assert ex.execute(ToolCall(f"s{i}", "stuck", {})).is_error
        res = ex.execute(ToolCall("c1", "echo", {"text": "x"}))
    finally:
        release.set()
    assert not res.is_error
    assert res.content == "ok"


def test_walking_tools_honour_deny_list(tmp_path, monkeypatch):
    monkeypatch.setattr(code_explore.shutil, "which", lambda name: None)
    (tmp_path / "secret").mkdir()
    (tmp_path / "secret" / "id_rsa").write_text("BEGIN PRIVATE KEY abc\n")
    cat = ToolCatalog()
    register_builtin_tools(cat)
    ex = ToolExecutor(
        cat,
        Permissions(denied_paths=[str(tmp_path / "secret")], require_approval_by_default=False),
        cwd=str(tmp_path),
    )
    direct = ex.execute(ToolCall("c1", "read_file", {"path": "secret/id_rsa"}))
    assert direct.content == "Tool 'read_file' execution denied by policy"
    walked = ex.execute(ToolCall("c2", "grep_search", {"pattern": "PRIVATE", "path": "."}))
    assert not walked.is_error
    assert walked.content == "No matches found for pattern: PRIVATE"
