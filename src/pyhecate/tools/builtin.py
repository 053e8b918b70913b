from __future__ import annotations
import json
from typing import Any

from .registry import ToolCatalog
from .base import ToolCategory, ToolSpec

from .builtin_tools.filesystem import EditFileTool, GlobSearchTool, ListDirectoryTool, ReadFileTool, WriteFileTool
from .builtin_tools.code_explore import CodeContextTool, GrepSearchTool, SymbolSearchTool
from .builtin_tools.system import AskUserTool, CwdTool, GetEnvTool, QuestionHandler, RunCommandTool
from .builtin_tools.web import WebFetchTool, WebSearchTool
from .builtin_tools.mesh import MeshCallTool, MeshClient, MeshPublishTool, MeshSearchTool


def _add(catalog: ToolCatalog, tool: Any) -> None:
    catalog.register(tool.spec, tool.execute)


def register_filesystem_tools(catalog: ToolCatalog) -> None:
    for t in (ReadFileTool(), WriteFileTool(), EditFileTool(), ListDirectoryTool(), GlobSearchTool()):
        _add(catalog, t)


def register_code_explore_tools(catalog: ToolCatalog) -> None:
    for t in (GrepSearchTool(), SymbolSearchTool(), CodeContextTool()):
        _add(catalog, t)


def register_system_tools(catalog: ToolCatalog, ask_user: QuestionHandler | None = None) -> None:
    for t in (RunCommandTool(), AskUserTool(ask_user), GetEnvTool(), CwdTool()):
        _add(catalog, t)


def register_web_tools(catalog: ToolCatalog) -> None:
    for t in (WebSearchTool(), WebFetchTool()):
        _add(catalog, t)


def register_mesh_tools(catalog: ToolCatalog, mesh: MeshClient | None = None) -> None:
    for t in (MeshSearchTool(mesh), MeshCallTool(mesh), MeshPublishTool(mesh)):
        _add(catalog, t)


def register_builtin_tools(
    catalog: ToolCatalog,
    *,
    mesh: MeshClient | None = None,
    ask_user: QuestionHandler | None = None,
    categories: set[ToolCategory] | None = None,
) -> None:
    wanted = categories or set(ToolCategory)
    if ToolCategory.FILESYSTEM in wanted:
        register_filesystem_tools(catalog)
    if ToolCategory.CODE_EXPLORE in wanted:
        register_code_explore_tools(catalog)
    if ToolCategory.SYSTEM in wanted:
        register_system_tools(catalog, ask_user)
    if ToolCategory.WEB in wanted:
        register_web_tools(catalog)
    if ToolCategory.MESH in wanted:
        register_mesh_tools(catalog, mesh)


def _clip(s: str, n: int = 50) -> str:
    return s[:n] + "..." if len(s) > n else s


_DESCRIBE = {
    "read_file": ("path", "Read file: {}"),
    "write_file": ("path", "Write file: {}"),
    "edit_file": ("path", "Edit file: {}"),
    "list_directory": ("path", "List directory: {}"),
    "glob_search": ("pattern", "Search for files: {}"),
    "grep_search": ("pattern", "Search for: {}"),
    "code_context": ("path", "Show context: {}"),
    "web_fetch": ("url", "Fetch: {}"),
    "web_search": ("query", "Web search: {}"),
    "mesh_call": ("procedure", "Mesh call: {}"),
    "mesh_publish": ("topic", "Publish to: {}"),
}


def describe_call(spec: ToolSpec, args: Any) -> str:
    """One-line human description of a call, for approval prompts."""
    if isinstance(args, str):
        try:
            args = json.loads(args) if args.strip() else {}
        except json.JSONDecodeError:
            return f"{spec.name} (invalid arguments)"
    if not isinstance(args, dict):
        return f"{spec.name} (invalid arguments)"

    if spec.name == "run_command" and isinstance(args.get("command"), str):
        return f"Run: {_clip(args['command'])}"
    if spec.name == "ask_user" and isinstance(args.get("question"), str):
        return f"Ask: {_clip(args['question'])}"
    entry = _DESCRIBE.get(spec.name)
    if entry and isinstance(args.get(entry[0]), str):
        return entry[1].format(args[entry[0]])
    return f"{spec.name}({', '.join(args.keys())})"
