from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import ConfigurationError, LoopBusyError, RoundLimitExceeded, StreamCancelled
from ..events.store import EventStore
from ..llm.stream import StreamSession
from ..llm.types import Message, ToolCall, ToolResult
from ..llm.wire import build_request
from ..tools.base import ToolSpec
from ..tools.executor import ApprovalDecision, Completed, NeedsApproval, ToolExecutor
from .events import (
    AbandonTool,
    AppendMessage,
    ApprovalDecided,
    ApprovalRequired,
    CancelRequested,
    ChunkReceived,
    CloseStream,
    Effect,
    EmitText,
    Event,
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
from .session import Conversation

CANCELLED_MSG = "Tool call cancelled by user"
SKIPPED_MSG = "Tool call skipped: an earlier call in this turn was denied by the user"
DEFAULT_MAX_ROUNDS = 25


class Phase(str, Enum):
    IDLE = "idle"
    AWAITING_STREAM = "awaiting_stream"
    TOOL_PENDING = "tool_pending"
    EXECUTING = "executing"


@dataclass(frozen=True)
class LoopState:
    phase: Phase = Phase.IDLE
    buffer: str = ""
    current: Optional[ToolCall] = None
    queued: tuple[ToolCall, ...] = ()
    awaiting_approval: Optional[str] = None
    # set when the user denies a call; the turn ends after its result
    stop_after_current: bool = False
    round: int = 0
    max_rounds: int = DEFAULT_MAX_ROUNDS
    abandoned: frozenset[str] = field(default_factory=frozenset)


def _freeze(state: LoopState, calls: tuple[ToolCall, ...] = ()) -> list[Effect]:
    if not state.buffer and not calls:
        return []
    return [AppendMessage(Message.assistant(state.buffer, calls))]


def _idle(state: LoopState, **kw: Any) -> LoopState:
    return replace(
        state,
        phase=Phase.IDLE,
        buffer="",
        current=None,
        queued=(),
        awaiting_approval=None,
        stop_after_current=False,
        **kw,
    )


def _error_result(call: ToolCall, msg: str) -> AppendMessage:
    return AppendMessage(Message.tool(ToolResult(tool_call_id=call.id, content=msg, is_error=True)))


def transition(state: LoopState, event: Event) -> tuple[LoopState, list[Effect]]:
    """Pure state machine step: no I/O, no clocks, no mutation."""
    phase = state.phase

    if isinstance(event, UserInput):
        if phase != Phase.IDLE:
            return state, []
        new = replace(_idle(state), phase=Phase.AWAITING_STREAM, round=1)
        return new, [AppendMessage(Message.user(event.text)), OpenStream(round=1)]

    if isinstance(event, ChunkReceived):
        if phase != Phase.AWAITING_STREAM:
            return state, []
        chunk = event.chunk
        effects: list[Effect] = []
        buffer = state.buffer
        if chunk.text:
            buffer += chunk.text
            effects.append(EmitText(chunk.text))
        calls = chunk.tool_calls
        if calls:
            effects.append(CloseStream())
            effects.extend(_freeze(replace(state, buffer=buffer), calls))
            new = replace(
                state,
                phase=Phase.TOOL_PENDING,
                buffer="",
                current=calls[0],
                queued=tuple(calls[1:]),
                awaiting_approval=None,
                stop_after_current=False,
            )
            effects.append(ResolveTool(calls[0]))
            return new, effects
        if chunk.done:
            effects.append(CloseStream())
            effects.extend(_freeze(replace(state, buffer=buffer)))
            effects.append(RoundFinished("done"))
            return _idle(state), effects
        return replace(state, buffer=buffer), effects

    if isinstance(event, StreamClosed):
        if phase != Phase.AWAITING_STREAM:
            return state, []
        return _idle(state), [*_freeze(state), RoundFinished("done")]

    if isinstance(event, StreamFailed):
        if phase != Phase.AWAITING_STREAM:
            return state, []
        return _idle(state), [CloseStream(), *_freeze(state), RoundFailed(event.error)]

    if isinstance(event, CancelRequested):
        if phase == Phase.AWAITING_STREAM:
            return _idle(state), [CloseStream(), *_freeze(state), RoundFinished("cancelled")]
        if phase in (Phase.TOOL_PENDING, Phase.EXECUTING) and state.current is not None:
            effects = [_error_result(c, CANCELLED_MSG) for c in (state.current, *state.queued)]
            effects.append(AbandonTool(state.current.id))
            effects.append(RoundFinished("cancelled"))
            abandoned = state.abandoned
            if phase == Phase.EXECUTING:
                # only a running call can still report back
                abandoned = abandoned | {state.current.id}
            return _idle(state, abandoned=abandoned), effects
        return state, []

    if isinstance(event, ApprovalRequired):
        if phase != Phase.TOOL_PENDING or state.current is None or event.call.id != state.current.id:
            return state, []
        return replace(state, awaiting_approval=event.call.id), [PromptApproval(event.spec, event.call)]

    if isinstance(event, ApprovalDecided):
        if phase != Phase.TOOL_PENDING or state.awaiting_approval != event.call_id:
            return state, []
        new = replace(state, awaiting_approval=None, stop_after_current=not event.decision.approved)
        return new, [SettleApproval(event.call_id, event.decision)]

    if isinstance(event, ToolStarted):
        if phase != Phase.TOOL_PENDING or state.current is None or event.call_id != state.current.id:
            return state, []
        return replace(state, phase=Phase.EXECUTING), []

    if isinstance(event, ToolFinished):
        call_id = event.result.tool_call_id
        if call_id in state.abandoned:
            # late result for a call already answered as cancelled
            return replace(state, abandoned=state.abandoned - {call_id}), []
        if phase not in (Phase.TOOL_PENDING, Phase.EXECUTING) or state.current is None:
            return state, []
        if call_id != state.current.id:
            return state, []
        effects = [AppendMessage(Message.tool(event.result))]
        if state.stop_after_current:
            effects.extend(_error_result(c, SKIPPED_MSG) for c in state.queued)
            effects.append(RoundFinished("denied"))
            return _idle(state), effects
        if state.queued:
            nxt = state.queued[0]
            new = replace(state, phase=Phase.TOOL_PENDING, current=nxt, queued=state.queued[1:])
            effects.append(ResolveTool(nxt))
            return new, effects
        if state.round >= state.max_rounds:
            effects.append(RoundFailed(RoundLimitExceeded(state.max_rounds)))
            return _idle(state), effects
        new = replace(
            _idle(state),
            phase=Phase.AWAITING_STREAM,
            round=state.round + 1,
        )
        effects.append(OpenStream(round=state.round + 1))
        return new, effects

    return state, []


# ---------------------------------------------------------
# driver
# ---------------------------------------------------------

OpenStreamFn = Callable[..., StreamSession]


class AgentLoop:
    """Drives ``transition`` from a cooperative terminal loop.

    Call ``tick()`` every ``poll_interval`` seconds. Nothing here blocks on
    network I/O: the stream is read by a StreamSession thread and tool
    handlers run on worker threads that report back through a queue.
    """

    def __init__(
        self,
        *,
        open_stream: OpenStreamFn,
        executor: ToolExecutor,
        conversation: Conversation,
        model: str | None,
        system_prompt: str | None = None,
        tools_enabled: bool = True,
        schema_format: str = "anthropic",
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        poll_interval: float = 0.01,
        events: EventStore | None = None,
        on_text: Callable[[str], None] | None = None,
        on_approval: Callable[[ToolSpec, ToolCall], None] | None = None,
        on_tool_start: Callable[[ToolCall], None] | None = None,
        on_finish: Callable[[str, BaseException | None], None] | None = None,
    ) -> None:
        self.open_stream = open_stream
        self.executor = executor
        self.conversation = conversation
        self.model = model
        self.system_prompt = system_prompt
        self.tools_enabled = tools_enabled
        self.schema_format = schema_format
        self.poll_interval = poll_interval
        self.events = events
        self.on_text = on_text
        self.on_approval = on_approval
        self.on_tool_start = on_tool_start
        self.on_finish = on_finish
        self.state = LoopState(max_rounds=max_rounds)
        self.session: StreamSession | None = None
        self.last_error: BaseException | None = None
        self.last_reason: str | None = None
        self._inbox: "queue.Queue[Event]" = queue.Queue()
        # cancel tokens of calls handed to a worker thread
        self._running: dict[str, threading.Event] = {}
        self._running_lock = threading.Lock()

    # -------- public API --------

    @property
    def idle(self) -> bool:
        return self.state.phase == Phase.IDLE and self._inbox.empty()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def submit(self, text: str) -> None:
        if self.state.phase != Phase.IDLE:
            raise LoopBusyError("a response is still in progress")
        self.last_error = None
        self.last_reason = None
        self._dispatch(UserInput(text))

    def cancel(self) -> None:
        self._dispatch(CancelRequested())

    def decide(self, call_id: str, approved: bool, for_session: bool = False) -> None:
        self._dispatch(ApprovalDecided(call_id, ApprovalDecision(approved, for_session)))

    def tick(self) -> bool:
        """Process whatever is ready. Returns True once the loop is idle."""
        self._pump_session()
        self._drain()
        return self.idle

    def run_until_idle(self, timeout: float | None = None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.tick():
            if deadline is not None and time.monotonic() > deadline:
                self.cancel()
                break
            time.sleep(self.poll_interval)

    def post(self, event: Event) -> None:
        """Thread-safe: queue an event for the next tick."""
        self._inbox.put(event)

    # -------- internals --------

    def _dispatch(self, event: Event) -> None:
        self._inbox.put(event)
        self._drain()

    def _drain(self) -> None:
        while True:
            try:
                ev = self._inbox.get_nowait()
            except queue.Empty:
                return
            self.state, effects = transition(self.state, ev)
            for eff in effects:
                self._apply(eff)

    def _pump_session(self) -> None:
        # one item per pass so a tool signal closes the session before
        # anything behind it is read
        while self.session is not None and self.state.phase == Phase.AWAITING_STREAM:
            item = self.session.poll()
            if item is None:
                return
            kind, payload = item
            if kind == "chunk":
                self._dispatch(ChunkReceived(payload))
            else:
                # "closed" carries the drained error, if any; "error" is a failure
                self._finish_session(payload)

    def _finish_session(self, err: BaseException | None) -> None:
        session, self.session = self.session, None
        if session is not None:
            session.cancel()
            self._log_usage(session)
        if err is None or isinstance(err, StreamCancelled):
            self._dispatch(StreamClosed())
        else:
            self._dispatch(StreamFailed(err))

    def _log(self, event_type: str, data: dict[str, Any]) -> None:
        if self.events is not None:
            self.events.append(event_type, data)

    def _log_usage(self, session: StreamSession) -> None:
        u = session.usage
        self._log(
            "llm.done",
            {
                "elapsed": round(session.elapsed, 3),
                "prompt_tokens": u.prompt_tokens,
                "completion_tokens": u.completion_tokens,
                "eval_duration": u.eval_duration,
            },
        )

    def _tool_schemas(self) -> list[dict[str, Any]] | None:
        if not self.tools_enabled or len(self.executor.catalog) == 0:
            return None
        if self.schema_format == "openai":
            return self.executor.catalog.to_openai_schema()
        return self.executor.catalog.to_anthropic_schema()

    def _open(self, round_no: int) -> None:
        if not self.model:
            self.post(StreamFailed(ConfigurationError("No model selected")))
            return
        req = build_request(
            self.model,
            self.conversation.messages,
            system_prompt=self.system_prompt,
            tools=self._tool_schemas(),
        )
        self._log(
            "llm.request",
            {"model": self.model, "round": round_no, "messages": len(req["messages"]), "tools": len(req.get("tools") or [])},
        )
        try:
            self.session = self.open_stream(
                req,
                on_skip=lambda line, err: self._log("stream.decode_skipped", {"line": line[:500], "error": err}),
            )
        except Exception as e:
            self.post(StreamFailed(e))

    def _close(self) -> None:
        session, self.session = self.session, None
        if session is not None:
            session.cancel()
            self._log_usage(session)

    def _apply(self, eff: Effect) -> None:
        if isinstance(eff, OpenStream):
            self._open(eff.round)
        elif isinstance(eff, CloseStream):
            self._close()
        elif isinstance(eff, EmitText):
            if self.on_text is not None:
                self.on_text(eff.text)
        elif isinstance(eff, AppendMessage):
            self.conversation.append(eff.message)
        elif isinstance(eff, ResolveTool):
            self._resolve(eff.call)
        elif isinstance(eff, PromptApproval):
            self._prompt(eff.spec, eff.call)
        elif isinstance(eff, SettleApproval):
            self._settle(eff.call_id, eff.decision)
        elif isinstance(eff, AbandonTool):
            self.executor.discard(eff.call_id)
            with self._running_lock:
                token = self._running.get(eff.call_id)
            if token is not None:
                token.set()
        elif isinstance(eff, RoundFinished):
            if eff.reason == "cancelled":
                self._log("llm.cancelled", {"round": self.state.round})
            self.last_reason = eff.reason
            if self.on_finish is not None:
                self.on_finish(eff.reason, None)
        elif isinstance(eff, RoundFailed):
            self._log("llm.error", {"error": str(eff.error), "type": type(eff.error).__name__})
            self.last_reason = "error"
            self.last_error = eff.error
            if self.on_finish is not None:
                self.on_finish("error", eff.error)

    def _resolve(self, call: ToolCall) -> None:
        step = self.executor.begin(call)
        if isinstance(step, Completed):
            self.post(ToolFinished(step.result))
        elif isinstance(step, NeedsApproval):
            self.post(ApprovalRequired(step.spec, step.call))
        else:
            self._start(step.call)

    def _prompt(self, spec: ToolSpec, call: ToolCall) -> None:
        if self.on_approval is not None:
            self.on_approval(spec, call)
            return
        handler = self.executor.approval_handler
        if handler is not None:
            self.post(ApprovalDecided(call.id, handler(spec, call)))
            return
        # nobody to ask: resolve as an unattended rejection
        self.post(ToolFinished(self.executor.reject_unattended(call.id).result))

    def _settle(self, call_id: str, decision: ApprovalDecision) -> None:
        step = self.executor.resume(call_id, decision)
        if isinstance(step, Completed):
            self.post(ToolFinished(step.result))
        else:
            self._start(step.call)

    def _start(self, call: ToolCall) -> None:
        self.post(ToolStarted(call.id))
        if self.on_tool_start is not None:
            self.on_tool_start(call)

        token = threading.Event()
        with self._running_lock:
            self._running[call.id] = token

        def work() -> None:
            try:
                result = self.executor.run(call, cancelled=token)
            finally:
                with self._running_lock:
                    self._running.pop(call.id, None)
            self.post(ToolFinished(result))

        threading.Thread(target=work, name=f"pyhecate-run-{call.name}", daemon=True).start()
