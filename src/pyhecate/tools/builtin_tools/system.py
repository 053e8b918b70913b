from __future__ import annotations

import os
from typing import Any, Callable

from ..base import ToolCategory, ToolContext, ToolError, ToolSpec, int_arg, integer, object_schema, str_arg, string
from ...util.fs import resolve_path
from ...util.subprocess import run_shell

DEFAULT_COMMAND_TIMEOUT = 60
MAX_COMMAND_TIMEOUT = 300
MAX_STDOUT = 10000
MAX_STDERR = 5000

QuestionHandler = Callable[[str, list[str]], str]

_SENSITIVE_ENV = {
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "NPM_TOKEN",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "DATABASE_URL",
    "DB_PASSWORD",
}
_SENSITIVE_MARKERS = ("SECRET", "PASSWORD", "TOKEN", "API_KEY")


def is_sensitive_env(name: str) -> bool:
    upper = name.upper()
    return upper in _SENSITIVE_ENV or any(m in upper for m in _SENSITIVE_MARKERS)


class RunCommandTool:
    spec = ToolSpec(
        name="run_command",
        description="Execute a shell command. For safety, certain destructive commands are blocked.",
        parameters=object_schema(
            {
                "command": string("The shell command to execute"),
                "working_dir": string("Working directory for the command (default: current directory)"),
                "timeout": integer(f"Timeout in seconds (default: {DEFAULT_COMMAND_TIMEOUT}, max: {MAX_COMMAND_TIMEOUT})"),
            },
            ["command"],
        ),
        category=ToolCategory.SYSTEM,
        requires_approval=True,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        command = str_arg(args, "command")
        if not command.strip():
            raise ToolError("command is required")
        timeout = int_arg(args, "timeout", DEFAULT_COMMAND_TIMEOUT)
        if timeout <= 0:
            timeout = DEFAULT_COMMAND_TIMEOUT
        timeout = min(timeout, MAX_COMMAND_TIMEOUT)
        if ctx.timeout:
            # never outlive the executor deadline
            timeout = min(timeout, ctx.timeout)
        wd = str_arg(args, "working_dir")
        workdir = str(resolve_path(ctx.cwd, wd)) if wd else ctx.cwd
        if not os.path.isdir(workdir):
            raise ToolError(f"working directory not found: {workdir}")

        res = run_shell(command, cwd=workdir, timeout=timeout, cancelled=ctx.cancelled)

        out = [f"$ {command}", f"Working directory: {workdir}", f"Duration: {res.duration:.2f}s", ""]
        if res.stdout:
            text = res.stdout
            if len(text) > MAX_STDOUT:
                text = text[:MAX_STDOUT] + f"\n... (truncated, {len(res.stdout) - MAX_STDOUT} bytes omitted)"
            out.append("STDOUT:")
            out.append(text.rstrip("\n"))
        if res.stderr:
            text = res.stderr
            if len(text) > MAX_STDERR:
                text = text[:MAX_STDERR] + "\n... (truncated)"
            out.append("")
            out.append("STDERR:")
            out.append(text.rstrip("\n"))
        out.append("")
        if res.cancelled:
            out.append("Command cancelled")
        elif res.timed_out:
            out.append(f"Command timed out after {timeout:g} seconds")
        else:
            out.append(f"Exit code: {res.returncode}")
        return "\n".join(out)


class AskUserTool:
    spec = ToolSpec(
        name="ask_user",
        description="Ask the user a question and wait for their response. Use when you need clarification or input.",
        parameters=object_schema(
            {
                "question": string("The question to ask the user"),
                "options": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Optional list of choices to present (if not provided, user can type freely)",
                },
            },
            ["question"],
        ),
        category=ToolCategory.SYSTEM,
    )

    def __init__(self, handler: QuestionHandler | None = None) -> None:
        self.handler = handler

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        question = str_arg(args, "question").strip()
        if not question:
            raise ToolError("question is required")
        if self.handler is None:
            raise ToolError("ask_user is not configured (no handler set)")
        options = args.get("options")
        options = [str(o) for o in options] if isinstance(options, list) else []
        answer = self.handler(question, options)
        return f"User answered: {answer}"


class GetEnvTool:
    spec = ToolSpec(
        name="get_env",
        description="Get the value of an environment variable.",
        parameters=object_schema({"name": string("Environment variable name")}, ["name"]),
        category=ToolCategory.SYSTEM,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        name = str_arg(args, "name")
        if not name:
            raise ToolError("name is required")
        if is_sensitive_env(name):
            raise ToolError(f"access to sensitive environment variable '{name}' is blocked")
        value = os.environ.get(name, "")
        if not value:
            return f"Environment variable '{name}' is not set"
        return f"{name}={value}"


class CwdTool:
    spec = ToolSpec(
        name="cwd",
        description="Get the current working directory.",
        parameters=object_schema({}),
        category=ToolCategory.SYSTEM,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        return ctx.cwd
