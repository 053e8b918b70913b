from __future__ import annotations

from pyhecate.agent.events import (
    AbandonTool,
    AppendMessage,
    ApprovalDecided,
    ApprovalRequired,
    CancelRequested,
    ChunkReceived,
    CloseStream,
    EmitText,
    OpenStream,
    PromptApproval,
    ResolveTool,
    RoundFailed,
    RoundFinished,
    SettleApproval,
    StreamClosed,
    StreamFailed,
    ToolFinished,
    ToolStarted,
    UserInput,
)
from pyhecate.agent.loop import CANCELLED_MSG, SKIPPED_MSG, LoopState, Phase, transition
from pyhecate.errors import DaemonError, RoundLimitExceeded
from pyhecate.llm.types import Chunk, EmbeddedToolCalls, Message, ToolCall, ToolResult
from pyhecate.tools.executor import ApprovalDecision

from conftest import echo_spec

C1 = ToolCall("c1", "read_file", {"path": "a.txt"})
C2 = ToolCall("c2", "list_directory", {"path": "."})


def kinds(effects):
    return [type(e) for e in effects]


def started() -> LoopState:
    state, _ = transition(LoopState(), UserInput("hello"))
    return state


def pending(*calls: ToolCall, **kw) -> LoopState:
    return LoopState(phase=Phase.TOOL_PENDING, current=calls[0], queued=tuple(calls[1:]), round=1, **kw)


def test_user_input_opens_first_round():
    state, effects = transition(LoopState(), UserInput("hello"))
    assert state.phase == Phase.AWAITING_STREAM
    assert state.round == 1
    assert effects == [AppendMessage(Message.user("hello")), OpenStream(round=1)]


def test_user_input_ignored_while_busy():
    state = started()
    again, effects = transition(state, UserInput("more"))
    assert again == state
    assert effects == []


def test_text_accumulates():
    state = started()
    state, effects = transition(state, ChunkReceived(Chunk(text="Hel")))
    state, _ = transition(state, ChunkReceived(Chunk(text="lo")))
    assert state.buffer == "Hello"
    assert effects == [EmitText("Hel")]


def test_three_frames_tool_signal_without_done():
    state = started()
    state, _ = transition(state, ChunkReceived(Chunk(text="Looking")))

    frame2 = Chunk(signal=EmbeddedToolCalls((C1,)), done=False)
    state, effects = transition(state, ChunkReceived(frame2))
    assert state.phase == Phase.TOOL_PENDING
    assert state.current == C1
    assert state.buffer == ""
    assert effects == [
        CloseStream(),
        AppendMessage(Message.assistant("Looking", [C1])),
        ResolveTool(C1),
    ]

    # the channel closing afterwards changes nothing
    after, effects = transition(state, StreamClosed())
    assert after == state
    assert effects == []


def test_done_flag_finishes_round():
    state = started()
    state, _ = transition(state, ChunkReceived(Chunk(text="Hi ")))
    state, effects = transition(state, ChunkReceived(Chunk(text="there", done=True)))
    assert state.phase == Phase.IDLE
    assert kinds(effects) == [EmitText, CloseStream, AppendMessage, RoundFinished]
    assert effects[2] == AppendMessage(Message.assistant("Hi there"))
    assert effects[3] == RoundFinished("done")


def test_source_close_without_done_is_success():
    state = started()
    state, _ = transition(state, ChunkReceived(Chunk(text="ok")))
    state, effects = transition(state, StreamClosed())
    assert state.phase == Phase.IDLE
    assert effects == [AppendMessage(Message.assistant("ok")), RoundFinished("done")]


def test_empty_round_appends_nothing():
    state, effects = transition(started(), StreamClosed())
    assert effects == [RoundFinished("done")]


def test_failure_keeps_partial_text():
    state = started()
    state, _ = transition(state, ChunkReceived(Chunk(text="part")))
    err = DaemonError("reset")
    state, effects = transition(state, StreamFailed(err))
    assert state.phase == Phase.IDLE
    assert effects == [CloseStream(), AppendMessage(Message.assistant("part")), RoundFailed(err)]


def test_cancel_while_streaming_preserves_buffer():
    state = started()
    state, _ = transition(state, ChunkReceived(Chunk(text="half an ans")))
    state, effects = transition(state, CancelRequested())
    assert state.phase == Phase.IDLE
    assert state.buffer == ""
    assert effects == [
        CloseStream(),
        AppendMessage(Message.assistant("half an ans")),
        RoundFinished("cancelled"),
    ]


def test_cancel_when_idle_is_a_no_op():
    state, effects = transition(LoopState(), CancelRequested())
    assert state == LoopState()
    assert effects == []


def test_cancel_during_tool_answers_every_call():
    state = pending(C1, C2)
    state, _ = transition(state, ToolStarted("c1"))
    assert state.phase == Phase.EXECUTING
    state, effects = transition(state, CancelRequested())
    assert state.phase == Phase.IDLE
    assert "c1" in state.abandoned
    results = [e.message for e in effects if isinstance(e, AppendMessage)]
    assert [(m.tool_call_id, m.content, m.is_error) for m in results] == [
        ("c1", CANCELLED_MSG, True),
        ("c2", CANCELLED_MSG, True),
    ]
    assert effects[-2:] == [AbandonTool("c1"), RoundFinished("cancelled")]

    # the worker finishing later must not add a second result
    late, effects = transition(state, ToolFinished(ToolResult("c1", "done")))
    assert effects == []
    assert "c1" not in late.abandoned


def test_user_denial_skips_rest_of_turn():
    spec = echo_spec("read_file", requires_approval=True)
    state = pending(C1, C2)
    state, effects = transition(state, ApprovalRequired(spec, C1))
    assert state.awaiting_approval == "c1"
    assert effects == [PromptApproval(spec, C1)]

    denied = ApprovalDecision(approved=False)
    state, effects = transition(state, ApprovalDecided("c1", denied))
    assert effects == [SettleApproval("c1", denied)]
    assert state.stop_after_current

    result = ToolResult("c1", "Tool execution denied by user", is_error=True)
    state, effects = transition(state, ToolFinished(result))
    assert state.phase == Phase.IDLE
    assert effects == [
        AppendMessage(Message.tool(result)),
        AppendMessage(Message.tool(ToolResult("c2", SKIPPED_MSG, is_error=True))),
        RoundFinished("denied"),
    ]


def test_decision_for_other_call_is_ignored():
    state = pending(C1)
    state, _ = transition(state, ApprovalRequired(echo_spec(), C1))
    same, effects = transition(state, ApprovalDecided("zzz", ApprovalDecision(approved=True)))
    assert same == state
    assert effects == []


def test_chained_calls_run_in_order_then_reopen():
    state = pending(C1, C2)
    state, effects = transition(state, ToolFinished(ToolResult("c1", "a")))
    assert state.current == C2
    assert effects == [AppendMessage(Message.tool(ToolResult("c1", "a"))), ResolveTool(C2)]

    state, effects = transition(state, ToolFinished(ToolResult("c2", "b")))
    assert state.phase == Phase.AWAITING_STREAM
    assert state.round == 2
    assert effects == [AppendMessage(Message.tool(ToolResult("c2", "b"))), OpenStream(round=2)]


def test_round_limit():
    state = pending(C1, max_rounds=1)
    state, effects = transition(state, ToolFinished(ToolResult("c1", "a")))
    assert state.phase == Phase.IDLE
    assert isinstance(effects[-1], RoundFailed)
    assert isinstance(effects[-1].error, RoundLimitExceeded)


def test_result_for_unknown_call_is_ignored():
    state = pending(C1)
    same, effects = transition(state, ToolFinished(ToolResult("other", "x")))
    assert same == state
    assert effects == []


def test_cancel_while_awaiting_approval_tracks_nothing():
    state = pending(C1)
    state, _ = transition(state, ApprovalRequired(echo_spec("read_file"), C1))
    state, effects = transition(state, CancelRequested())
    assert state.phase == Phase.IDLE
    # a parked call never reports back, so there is no late result to drop
    assert state.abandoned == frozenset()
    assert AbandonTool("c1") in effects
