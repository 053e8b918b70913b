from __future__ import annotations

import json
import os
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from ..llm.types import ToolCall, ToolResult
from .base import ToolContext, ToolSpec
from .permissions import PermissionLevel, Permissions
from .registry import ToolCatalog

DEFAULT_TIMEOUT = 60.0


@dataclass(frozen=True)
class ApprovalDecision:
    approved: bool
    grant_for_session: bool = False


ApprovalHandler = Callable[[ToolSpec, ToolCall], ApprovalDecision]


@dataclass(frozen=True)
class Completed:
    result: ToolResult


@dataclass(frozen=True)
class NeedsApproval:
    spec: ToolSpec
    call: ToolCall


@dataclass(frozen=True)
class Ready:
    call: ToolCall


Step = Union[Completed, NeedsApproval, Ready]


def decode_arguments(raw: Any) -> dict[str, Any]:
    """Normalize tool arguments to a dict; raises ValueError otherwise."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)):
        obj = json.loads(raw)
        if isinstance(obj, dict):
            return obj
        raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
    raise ValueError(f"expected a JSON object, got {type(raw).__name__}")


def _error(call: ToolCall, msg: str) -> ToolResult:
    return ToolResult(tool_call_id=call.id, content=msg, is_error=True)


class ToolExecutor:
    """Resolves, authorizes and runs tool calls.

    ``begin`` / ``resume`` / ``run`` form the non-blocking path used by the
    agent loop: an ASK decision parks the call until a decision arrives.
    ``execute`` chains the same steps synchronously with the configured
    approval handler.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        permissions: Permissions,
        *,
        approval_handler: ApprovalHandler | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cwd: str | None = None,
        session_id: str | None = None,
        on_event: Callable[[str, dict[str, Any]], None] | None = None,
    ) -> None:
        self.catalog = catalog
        self.permissions = permissions
        self.approval_handler = approval_handler
        self.timeout = timeout
        self.cwd = cwd or os.getcwd()
        self.session_id = session_id
        self.on_event = on_event
        self._lock = threading.Lock()
        self._parked: dict[str, ToolCall] = {}
        self._running: dict[str, ToolContext] = {}

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        if self.on_event is not None:
            self.on_event(event_type, data)

    # -------- continuation API --------

    def begin(self, call: ToolCall) -> Step:
        self._emit("tool.call", {"id": call.id, "name": call.name, "arguments": call.arguments})
        entry = self.catalog.get(call.name)
        if entry is None:
            return Completed(self._finish(call, _error(call, f"Unknown tool: {call.name}")))
        spec, _ = entry
        try:
            args = decode_arguments(call.arguments)
        except ValueError as e:
            return Completed(self._finish(call, _error(call, f"invalid arguments: {e}")))

        level = self.permissions.check(
            spec.name,
            args,
            requires_approval=spec.requires_approval,
            category=spec.category,
            cwd=self.cwd,
        )
        if level == PermissionLevel.DENY:
            return Completed(self._finish(call, _error(call, f"Tool '{spec.name}' execution denied by policy")))
        if level == PermissionLevel.ASK:
            with self._lock:
                self._parked[call.id] = call
            return NeedsApproval(spec=spec, call=call)
        return Ready(call)

    def resume(self, call_id: str, decision: ApprovalDecision) -> Union[Completed, Ready]:
        with self._lock:
            call = self._parked.pop(call_id, None)
        if call is None:
            raise KeyError(f"no tool call awaiting approval: {call_id}")
        self._emit(
            "tool.approval",
            {"id": call.id, "name": call.name, "approved": decision.approved, "session": decision.grant_for_session},
        )
        if not decision.approved:
            return Completed(self._finish(call, _error(call, "Tool execution denied by user")))
        if decision.grant_for_session:
            self.permissions.grant_for_session(call.name)
        return Ready(call)

    def reject_unattended(self, call_id: str) -> Completed:
        with self._lock:
            call = self._parked.pop(call_id, None)
        if call is None:
            raise KeyError(f"no tool call awaiting approval: {call_id}")
        msg = f"Tool '{call.name}' requires approval but no approval handler is configured"
        return Completed(self._finish(call, _error(call, msg)))

    def discard(self, call_id: str) -> None:
        with self._lock:
            self._parked.pop(call_id, None)

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._parked)

    def run(self, call: ToolCall, cancelled: threading.Event | None = None) -> ToolResult:
        """Invoke the handler under the deadline. Never raises.

        ``cancelled`` lets the caller stop the handler; a call cancelled
        before it starts never reaches the handler.
        """
        entry = self.catalog.get(call.name)
        if entry is None:
            return self._finish(call, _error(call, f"Unknown tool: {call.name}"))
        spec, handler = entry
        try:
            args = decode_arguments(call.arguments)
        except ValueError as e:
            return self._finish(call, _error(call, f"invalid arguments: {e}"))

        ctx = ToolContext(
            cwd=self.cwd,
            session_id=self.session_id,
            timeout=self.timeout,
            denied=lambda p: self.permissions.is_denied_path(p, self.cwd),
        )
        if cancelled is not None:
            if cancelled.is_set():
                return self._finish(call, _error(call, f"Tool '{spec.name}' cancelled"))
            ctx.cancelled = cancelled
        fut: Future = Future()

        def work() -> None:
            try:
                fut.set_result(handler(ctx, args))
            except Exception as e:
                fut.set_exception(e)

        with self._lock:
            self._running[call.id] = ctx
        # handlers that ignore cancellation only ever hold their own thread
        threading.Thread(target=work, name=f"pyhecate-tool-{spec.name}", daemon=True).start()
        try:
            content = fut.result(timeout=self.timeout)
        except FutureTimeout:
            ctx.cancelled.set()
            res = _error(call, f"Tool '{spec.name}' timed out after {self.timeout:g}s")
        except Exception as e:
            res = _error(call, str(e) or type(e).__name__)
        else:
            res = ToolResult(tool_call_id=call.id, content="" if content is None else str(content))
        finally:
            with self._lock:
                self._running.pop(call.id, None)
        return self._finish(call, res)

    def _finish(self, call: ToolCall, res: ToolResult) -> ToolResult:
        self._emit(
            "tool.result",
            {"id": call.id, "name": call.name, "is_error": res.is_error, "content": res.content[:2000]},
        )
        return res

    # -------- synchronous API --------

    def execute(self, call: ToolCall) -> ToolResult:
        step: Step = self.begin(call)
        if isinstance(step, NeedsApproval):
            if self.approval_handler is None:
                step = self.reject_unattended(call.id)
            else:
                try:
                    decision = self.approval_handler(step.spec, step.call)
                except Exception as e:
                    self.discard(call.id)
                    return self._finish(call, _error(call, f"approval failed: {e}"))
                step = self.resume(call.id, decision)
        if isinstance(step, Completed):
            return step.result
        return self.run(step.call)

    def execute_all(self, calls: list[ToolCall]) -> list[ToolResult]:
        return [self.execute(c) for c in calls]

    def close(self) -> None:
        with self._lock:
            running = list(self._running.values())
        for ctx in running:
            ctx.cancelled.set()
