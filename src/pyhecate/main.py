from __future__ import annotations

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.align import Align
from rich.markup import escape
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .agent.loop import AgentLoop
from .app_context import AppContext
from .config.loader import load_config
from .errors import ConfigurationError, DaemonError, LoopBusyError
from .events.store import EventStore
from .llm.client import DaemonClient
from .llm.types import Message, ToolCall, Usage
from .session.store import SessionStore, list_sessions
from .tools.base import ToolSpec
from .tools.builtin import describe_call, register_builtin_tools
from .tools.registry import ToolCatalog
from .util.fs import truncate

app = typer.Typer(add_completion=False, help="pyhecate: terminal LLM client with tool calling through the local daemon.")
console = Console()

HELP_TEXT = """[bold]/help[/bold]                 show this help
[bold]/tools[/bold]                list available tools
[bold]/grants[/bold]               list session approvals and disabled tools
[bold]/revoke \\[tool][/bold]       drop one session approval, or all of them
[bold]/set <tool> <level>[/bold]   set a tool to allow, ask or deny
[bold]/disable <tool>[/bold]       deny a tool for the rest of the session
[bold]/enable <tool>[/bold]        restore a disabled tool
[bold]/exit[/bold]                 quit
Ctrl-C cancels the response in progress."""


def _ask_user(question: str, options: list[str]) -> str:
    console.print(f"\n[bold]Question:[/bold] {question}")
    for i, o in enumerate(options, start=1):
        console.print(f"  {i}. {o}")
    ans = Prompt.ask("Your answer").strip()
    if options and ans.isdigit() and 1 <= int(ans) <= len(options):
        return options[int(ans) - 1]
    return ans


def _build_context(
    *,
    config: Optional[Path],
    url: Optional[str],
    socket: Optional[str],
    model: Optional[str],
    system: Optional[str],
    session: Optional[str],
    yes: bool,
    no_tools: bool,
) -> AppContext:
    try:
        return AppContext.from_options(
            Path.cwd(),
            config_path=config,
            url=url,
            socket=socket,
            model=model,
            system=system,
            session_id=session,
            yes=yes,
            no_tools=no_tools,
            ask_user=_ask_user,
        )
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)


def _header(ctx: AppContext, title: str) -> None:
    cfg = ctx.config
    table = Table.grid(padding=(0, 2))
    table.add_row("[bold green]cwd[/bold green]", f"[bright_cyan]{ctx.cwd}[/bright_cyan]")
    table.add_row("[bold green]session[/bold green]", f"[bright_cyan]{ctx.session_id}[/bright_cyan]")
    status = "[green]up[/green]" if ctx.client.health() else "[red]unreachable[/red]"
    table.add_row("[bold green]daemon[/bold green]", f"[bright_cyan]{cfg.daemon.socket or cfg.daemon.url}[/bright_cyan] {status}")
    table.add_row("[bold green]model[/bold green]", f"[bright_cyan]{cfg.model or '(none)'}[/bright_cyan]")
    table.add_row("[bold green]tools[/bold green]", f"[bright_cyan]{len(ctx.catalog) if cfg.tools.enabled else 'disabled'}[/bright_cyan]")
    table.add_row(
        "[bold green]config[/bold green]",
        f"[bright_cyan]{', '.join(str(p) for p in cfg.loaded_from) or '(defaults)'}[/bright_cyan]",
    )
    console.print(Align.center(Panel(table, title=f"[bold magenta]{title}[/bold magenta]", border_style="bright_blue")))


class Terminal:
    """Cooperative driver: ticks the loop and answers approval prompts."""

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self.pending: list[tuple[ToolSpec, ToolCall]] = []
        self.loop: AgentLoop = ctx.build_loop(
            on_text=self._on_text,
            # a configured handler (--yes) answers without prompting
            on_approval=None if ctx.executor.approval_handler else self._on_approval,
            on_tool_start=self._on_tool_start,
            on_finish=self._on_finish,
        )
        ctx.conversation.on_append = self._on_append

    def _on_text(self, text: str) -> None:
        console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    def _on_approval(self, spec: ToolSpec, call: ToolCall) -> None:
        self.pending.append((spec, call))

    def _on_tool_start(self, call: ToolCall) -> None:
        entry = self.ctx.catalog.get(call.name)
        desc = describe_call(entry[0], call.arguments) if entry else call.name
        console.print(f"\n[cyan]⚙ {escape(desc)}[/cyan]")

    def _on_append(self, msg: Message) -> None:
        if msg.role == "tool":
            style = "red" if msg.is_error else "green"
            console.print(
                Panel(escape(truncate(msg.content, 800)), title=f"tool result ({msg.tool_call_id})", border_style=style),
            )

    def _on_finish(self, reason: str, error: BaseException | None) -> None:
        console.print()
        # notices stay in the transcript but are never sent to the model
        if error is not None:
            console.print(f"[red]Error:[/red] {escape(str(error))}")
            self.ctx.conversation.append(Message.notice(f"Error: {error}"))
        elif reason == "cancelled":
            console.print("[yellow]Cancelled.[/yellow]")
            self.ctx.conversation.append(Message.notice("Cancelled by user"))
        elif reason == "denied":
            console.print("[yellow]Stopped: tool call denied.[/yellow]")

    def _prompt_approval(self, spec: ToolSpec, call: ToolCall) -> None:
        perms = self.ctx.permissions
        args = call.arguments
        body = escape(describe_call(spec, args))
        if spec.name == "run_command" and isinstance(args, dict) and isinstance(args.get("command"), str):
            known = perms.is_known_command(args["command"])
            body += "\n[dim]known command[/dim]" if known else "\n[yellow]unrecognized command[/yellow]"
        preview = json.dumps(args, ensure_ascii=False, indent=2) if isinstance(args, dict) else str(args)
        preview = escape(truncate(preview, 2000))
        console.print(
            Panel(
                f"{body}\n\n{preview}",
                title=f"[yellow]Tool requires approval[/yellow]: [bold]{spec.name}[/bold] ({spec.category.display_name})",
                border_style="yellow",
            )
        )
        ans = console.input("Allow? \\[y]es / \\[s]ession / \\[N]o ").strip().lower()
        approved = ans in {"y", "yes", "s", "session"}
        self.loop.decide(call.id, approved, for_session=ans in {"s", "session"})

    def run_turn(self, text: str) -> None:
        console.print("\n[bold]Assistant:[/bold]")
        try:
            self.loop.submit(text)
        except LoopBusyError as e:
            console.print(f"[red]{e}[/red]")
            return
        while True:
            try:
                while self.pending:
                    spec, call = self.pending.pop(0)
                    self._prompt_approval(spec, call)
                if self.loop.tick() and not self.pending:
                    return
                time.sleep(self.loop.poll_interval)
            except KeyboardInterrupt:
                self.pending.clear()
                self.loop.cancel()

    def slash(self, line: str) -> bool:
        """Handle a slash command. Returns False when the REPL should exit."""
        parts = line.split()
        cmd, arg = parts[0].lower(), (parts[1] if len(parts) > 1 else "")
        perms = self.ctx.permissions
        if cmd in {"/exit", "/quit"}:
            return False
        if cmd == "/help":
            console.print(Panel(HELP_TEXT, title="Commands"))
        elif cmd == "/tools":
            _print_catalog(self.ctx.catalog, self.ctx)
        elif cmd == "/grants":
            grants = perms.session_grants()
            console.print(f"Session grants: {', '.join(grants) if grants else '(none)'}")
            disabled = perms.disabled_tools()
            if disabled:
                console.print(f"Disabled: {', '.join(disabled)}")
        elif cmd == "/revoke" and not arg:
            perms.clear_session_grants()
            console.print("Cleared all session grants.")
        elif cmd == "/set":
            level = parts[2].lower() if len(parts) > 2 else ""
            if not arg or level not in {"allow", "ask", "deny"}:
                console.print("Usage: /set <tool> <allow|ask|deny>")
            elif arg not in self.ctx.catalog:
                console.print(f"[red]Unknown tool:[/red] {escape(arg)}")
            else:
                perms.set_tool_permission(arg, level)
                console.print(f"{arg}: {level}")
        elif cmd in {"/revoke", "/disable", "/enable"}:
            if not arg:
                console.print(f"Usage: {cmd} <tool>")
            elif arg not in self.ctx.catalog:
                console.print(f"[red]Unknown tool:[/red] {escape(arg)}")
            elif cmd == "/revoke":
                perms.revoke_session_grant(arg)
                console.print(f"Revoked session grant for {arg}.")
            elif cmd == "/disable":
                perms.disable_tool(arg)
                console.print(f"Disabled {arg}.")
            else:
                perms.enable_tool(arg)
                console.print(f"Enabled {arg}.")
        else:
            console.print(f"[red]Unknown command:[/red] {escape(cmd)} (try /help)")
        return True


def _print_catalog(catalog: ToolCatalog, ctx: AppContext | None = None) -> None:
    for category, specs in catalog.by_category().items():
        table = Table(title=category.display_name, show_lines=False, title_justify="left")
        table.add_column("tool", style="bold")
        table.add_column("approval")
        table.add_column("description")
        for s in specs:
            flag = "required" if s.requires_approval else ""
            if ctx is not None:
                if ctx.permissions.is_disabled(s.name):
                    flag = "[red]disabled[/red]"
                elif ctx.permissions.session_granted(s.name):
                    flag = "[green]granted[/green]"
            table.add_row(s.name, flag, s.description)
        console.print(table)


ConfigOpt = typer.Option(None, "--config", help="YAML config path (merged over global and ./pyhecate.yaml).")
UrlOpt = typer.Option(None, "--url", help="Daemon base URL.")
SocketOpt = typer.Option(None, "--socket", help="Daemon Unix socket path.")
ModelOpt = typer.Option(None, "--model", "-m", help="Model name.")
SessionOpt = typer.Option(None, "--session", help="Session id to resume (default creates new).")
YesOpt = typer.Option(False, "--yes", help="Approve tools that ask; deny lists still apply.")
NoToolsOpt = typer.Option(False, "--no-tools", help="Do not offer tools to the model.")
SystemOpt = typer.Option(None, "--system", help="Override the system prompt.")


@app.command()
def chat(
    config: Path = ConfigOpt,
    url: str = UrlOpt,
    socket: str = SocketOpt,
    model: str = ModelOpt,
    session: str = SessionOpt,
    yes: bool = YesOpt,
    no_tools: bool = NoToolsOpt,
    system: str = SystemOpt,
):
    """Interactive chat."""
    ctx = _build_context(
        config=config, url=url, socket=socket, model=model, system=system, session=session, yes=yes, no_tools=no_tools
    )
    _header(ctx, "pyhecate")
    term = Terminal(ctx)
    console.print("Type /help for commands.")
    try:
        while True:
            try:
                line = Prompt.ask("\n[bold]You[/bold]")
            except (EOFError, KeyboardInterrupt):
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not term.slash(line):
                    break
                continue
            term.run_turn(line)
    finally:
        ctx.close()


@app.command()
def run(
    prompt: str = typer.Option(..., "--prompt", "-p", help="User prompt to run once."),
    config: Path = ConfigOpt,
    url: str = UrlOpt,
    socket: str = SocketOpt,
    model: str = ModelOpt,
    session: str = SessionOpt,
    yes: bool = YesOpt,
    no_tools: bool = NoToolsOpt,
    system: str = SystemOpt,
):
    """Run a single prompt to completion."""
    ctx = _build_context(
        config=config, url=url, socket=socket, model=model, system=system, session=session, yes=yes, no_tools=no_tools
    )
    _header(ctx, "pyhecate")
    term = Terminal(ctx)
    console.print(f"\n[bold]You:[/bold] {prompt}")
    try:
        term.run_turn(prompt)
    finally:
        ctx.close()
    if term.loop.last_error is not None:
        raise typer.Exit(code=1)


@app.command()
def tools(
    config: Path = ConfigOpt,
):
    """List built-in tools by category."""
    try:
        cfg = load_config(cwd=Path.cwd(), explicit_path=config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)
    catalog = ToolCatalog()
    register_builtin_tools(catalog)
    _print_catalog(catalog)
    if not cfg.tools.enabled:
        console.print("[yellow]Tools are disabled in the config.[/yellow]")


@app.command()
def models(
    config: Path = ConfigOpt,
    url: str = UrlOpt,
    socket: str = SocketOpt,
):
    """List models available through the daemon."""
    try:
        cfg = load_config(cwd=Path.cwd(), explicit_path=config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)
    with DaemonClient(url or cfg.daemon.url, socket_path=None if url else (socket or cfg.daemon.socket)) as client:
        try:
            items = client.list_models()
        except DaemonError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1)
    if not items:
        console.print("No models available.")
        return
    table = Table(title="Models")
    table.add_column("name", style="bold")
    table.add_column("provider")
    table.add_column("size")
    for m in items:
        marker = " *" if m.name == cfg.model else ""
        table.add_row(m.name + marker, m.provider, m.size)
    console.print(table)


@app.command()
def sessions(
    limit: int = typer.Option(20, "--limit", help="Show the N most recent sessions."),
):
    """List saved sessions, newest first."""
    ids = list_sessions()[:limit] if limit > 0 else list_sessions()
    if not ids:
        console.print("No saved sessions.")
        return
    table = Table(title="Sessions")
    table.add_column("session", style="bold")
    table.add_column("messages", justify="right")
    table.add_column("last user message")
    for sid in ids:
        msgs = SessionStore.open(session_id=sid).load()
        last_user = next((m.content for m in reversed(msgs) if m.role == "user"), "")
        table.add_row(sid, str(len(msgs)), escape(truncate(last_user.replace("\n", " "), 60)))
    console.print(table)


@app.command()
def replay(
    session: str = typer.Option(..., "--session", help="Session id to replay."),
    tail: int = typer.Option(50, "--tail", help="Show last N messages."),
    show_system: bool = typer.Option(False, "--show-system", help="Include local notices."),
):
    """Replay recent conversation messages from a saved session."""
    store = SessionStore.open(session_id=session)
    msgs = store.load()
    if not show_system:
        msgs = [m for m in msgs if m.role != "system"]
    msgs = msgs[-tail:] if tail and tail > 0 else msgs

    console.print(Panel.fit(f"session: {store.session_id}\nfile: {store.path}", title="Replay"))
    for m in msgs:
        title = m.role
        if m.role == "tool":
            title = f"tool ({m.tool_call_id}){' error' if m.is_error else ''}"
        body = escape(m.content)
        if m.tool_calls:
            calls = "\n".join(f"→ {c.name} {escape(json.dumps(c.arguments, ensure_ascii=False))}" for c in m.tool_calls)
            body = f"{body}\n{calls}" if body else calls
        console.print(Panel(body or "", title=title, border_style="red" if m.is_error else "blue"))


@app.command()
def events(
    session: str = typer.Option(..., "--session", help="Session id to inspect events."),
    tail: int = typer.Option(200, "--tail", help="Show last N events."),
    type_: str = typer.Option(None, "--type", help="Only events whose type starts with this (e.g. tool.)."),
):
    """Show recorded structured events (requests, tool calls) for a session."""
    es = EventStore.open(session)
    evs = list(es.iter_events(type_))
    evs = evs[-tail:] if tail and tail > 0 else evs
    console.print(Panel.fit(f"session: {session}\nfile: {es.path}\nevents: {len(evs)}", title="Events"))
    for e in evs:
        ts = datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M:%S")
        console.print(Panel.fit(escape(truncate(json.dumps(e.data, ensure_ascii=False, indent=2), 4000)), title=f"{ts}  {e.type}"))


@app.command()
def stats(
    session: str = typer.Option(..., "--session", help="Session id to summarize."),
):
    """Compact summary of a session: rounds, token usage, errors and tool usage."""
    es = EventStore.open(session)
    evs = list(es.iter_events())

    def count(t: str) -> int:
        return sum(1 for e in evs if e.type == t)

    done = [e for e in evs if e.type == "llm.done"]
    prompt_tokens = sum(int(e.data.get("prompt_tokens") or 0) for e in done)
    completion_tokens = sum(int(e.data.get("completion_tokens") or 0) for e in done)
    usage = Usage(
        completion_tokens=completion_tokens,
        eval_duration=sum(int(e.data.get("eval_duration") or 0) for e in done),
    )

    freq: dict[str, int] = {}
    for e in evs:
        if e.type == "tool.call":
            name = str(e.data.get("name") or "")
            if name:
                freq[name] = freq.get(name, 0) + 1
    top_tools = sorted(freq.items(), key=lambda x: x[1], reverse=True)[:12]
    tool_errors = sum(1 for e in evs if e.type == "tool.result" and e.data.get("is_error"))

    lines = [
        f"session: {session}",
        f"events_file: {es.path}",
        f"llm_requests: {count('llm.request')}  llm_errors: {count('llm.error')}  cancelled: {count('llm.cancelled')}",
        f"tokens: prompt={prompt_tokens} completion={completion_tokens}  tokens/s: {usage.tokens_per_second:.1f}",
        f"decode_skipped: {count('stream.decode_skipped')}",
        f"tool_calls: {count('tool.call')}  tool_errors: {tool_errors}  approvals: {count('tool.approval')}",
    ]
    if top_tools:
        lines.append("top_tools:")
        lines.extend(f"  - {name}: {c}" for name, c in top_tools)
    console.print(Panel.fit("\n".join(lines), title="Stats"))


if __name__ == "__main__":
    app()
