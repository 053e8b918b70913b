from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .agent.loop import AgentLoop
from .agent.session import Conversation
from .config.loader import load_config
from .config.models import AppConfig
from .events.store import EventStore
from .llm.client import DaemonClient
from .llm.types import ToolCall
from .session.store import SessionStore
from .tools.base import ToolSpec
from .tools.builtin import register_builtin_tools
from .tools.builtin_tools.system import QuestionHandler
from .tools.executor import ApprovalDecision, ApprovalHandler, ToolExecutor
from .tools.permissions import Permissions
from .tools.registry import ToolCatalog


def auto_approve(spec: ToolSpec, call: ToolCall) -> ApprovalDecision:
    return ApprovalDecision(approved=True)


@dataclass
class AppContext:
    cwd: Path
    config: AppConfig
    client: DaemonClient
    catalog: ToolCatalog
    permissions: Permissions
    executor: ToolExecutor
    conversation: Conversation
    events: EventStore

    @property
    def session_id(self) -> str:
        return self.events.session_id

    def close(self) -> None:
        self.executor.close()
        self.client.close()

    def build_loop(self, **callbacks: Callable) -> AgentLoop:
        cfg = self.config
        return AgentLoop(
            open_stream=self.client.chat_stream,
            executor=self.executor,
            conversation=self.conversation,
            model=cfg.model,
            system_prompt=cfg.system_prompt,
            tools_enabled=cfg.tools.enabled,
            schema_format=cfg.tools.schema_format,
            max_rounds=cfg.max_rounds,
            poll_interval=cfg.poll_interval,
            events=self.events,
            **callbacks,
        )

    @staticmethod
    def from_options(
        cwd: Path,
        *,
        config_path: Optional[Path] = None,
        url: str | None = None,
        socket: str | None = None,
        model: str | None = None,
        system: str | None = None,
        session_id: str | None = None,
        yes: bool = False,
        no_tools: bool = False,
        ask_user: QuestionHandler | None = None,
        approval_handler: ApprovalHandler | None = None,
    ) -> "AppContext":
        cfg = load_config(cwd=cwd, explicit_path=config_path)

        # CLI overrides
        if url:
            cfg.daemon.url = url
            cfg.daemon.socket = None
        if socket:
            cfg.daemon.socket = socket
        if model:
            cfg.model = model
        if system is not None:
            cfg.system_prompt = system
        if no_tools:
            cfg.tools.enabled = False

        client = DaemonClient(cfg.daemon.url, socket_path=cfg.daemon.socket, timeout=cfg.daemon.timeout)

        catalog = ToolCatalog()
        if cfg.tools.enabled:
            register_builtin_tools(catalog, mesh=client, ask_user=ask_user)

        permissions = Permissions.from_config(cfg.permissions)

        store = SessionStore.open(session_id=session_id)
        conversation = Conversation.resume(store)
        events = EventStore.open(store.session_id)

        executor = ToolExecutor(
            catalog,
            permissions,
            # --yes approves every ASK; DENY from the deny lists still applies
            approval_handler=auto_approve if yes else approval_handler,
            timeout=cfg.tools.timeout,
            cwd=str(cwd),
            session_id=store.session_id,
            on_event=events.append,
        )

        return AppContext(
            cwd=cwd,
            config=cfg,
            client=client,
            catalog=catalog,
            permissions=permissions,
            executor=executor,
            conversation=conversation,
            events=events,
        )
