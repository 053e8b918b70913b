from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import Any

from ..base import ToolCategory, ToolContext, ToolError, ToolSpec, boolean, int_arg, integer, object_schema, str_arg, string
from ...util.fs import is_hidden, read_text, resolve_path

DEFAULT_READ_LIMIT = 500
DEFAULT_GLOB_LIMIT = 100


class ReadFileTool:
    spec = ToolSpec(
        name="read_file",
        description="Read the contents of a file. Returns file content with line numbers.",
        parameters=object_schema(
            {
                "path": string("Path to the file to read"),
                "offset": integer("Line number to start reading from (1-indexed, default: 1)"),
                "limit": integer(f"Maximum number of lines to read (default: {DEFAULT_READ_LIMIT})"),
            },
            ["path"],
        ),
        category=ToolCategory.FILESYSTEM,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        raw = str_arg(args, "path")
        p = resolve_path(ctx.cwd, raw)
        try:
            text = read_text(p)
        except OSError as e:
            raise ToolError(f"failed to read file: {e}")

        lines = text.split("\n")
        offset = max(1, int_arg(args, "offset", 1))
        limit = int_arg(args, "limit", DEFAULT_READ_LIMIT)
        if limit <= 0:
            limit = DEFAULT_READ_LIMIT

        start = offset - 1
        if start >= len(lines):
            return f"File has only {len(lines)} lines, offset {offset} is out of range"
        end = min(start + limit, len(lines))

        out = [f"File: {raw} ({len(lines)} lines total)"]
        if start > 0 or end < len(lines):
            out.append(f"Showing lines {start + 1}-{end}")
        out.append("")
        out.extend(f"{i + 1:6d}│ {lines[i]}" for i in range(start, end))
        return "\n".join(out) + "\n"


class WriteFileTool:
    spec = ToolSpec(
        name="write_file",
        description="Write content to a file, creating it if it doesn't exist or overwriting if it does.",
        parameters=object_schema(
            {
                "path": string("Path to the file to write"),
                "content": string("Content to write to the file"),
            },
            ["path", "content"],
        ),
        category=ToolCategory.FILESYSTEM,
        requires_approval=True,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        raw = str_arg(args, "path")
        content = str_arg(args, "content")
        p = resolve_path(ctx.cwd, raw)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ToolError(f"failed to write file: {e}")
        lines = content.count("\n") + 1
        return f"Successfully wrote {len(content.encode('utf-8'))} bytes ({lines} lines) to {raw}"


class EditFileTool:
    spec = ToolSpec(
        name="edit_file",
        description="Find and replace text in a file. The old_string must match exactly (including whitespace).",
        parameters=object_schema(
            {
                "path": string("Path to the file to edit"),
                "old_string": string("The exact text to find and replace"),
                "new_string": string("The replacement text"),
                "replace_all": boolean("Replace all occurrences instead of just the first (default: false)"),
            },
            ["path", "old_string", "new_string"],
        ),
        category=ToolCategory.FILESYSTEM,
        requires_approval=True,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        raw = str_arg(args, "path")
        old = str_arg(args, "old_string")
        new = str_arg(args, "new_string")
        if not raw or not old:
            raise ToolError("path and old_string are required")
        p = resolve_path(ctx.cwd, raw)
        try:
            content = p.read_text(encoding="utf-8")
        except OSError as e:
            raise ToolError(f"failed to read file: {e}")

        count = content.count(old)
        if count == 0:
            raise ToolError("old_string not found in file")
        replace_all = bool(args.get("replace_all"))
        if replace_all:
            updated = content.replace(old, new)
        else:
            updated = content.replace(old, new, 1)
        try:
            p.write_text(updated, encoding="utf-8")
        except OSError as e:
            raise ToolError(f"failed to write file: {e}")

        if count > 1 and not replace_all:
            return f"Replaced 1 of {count} occurrences in {raw}"
        return f"Successfully replaced {count if replace_all else 1} occurrence(s) in {raw}"


class ListDirectoryTool:
    spec = ToolSpec(
        name="list_directory",
        description="List files and directories in a path.",
        parameters=object_schema(
            {
                "path": string("Path to the directory to list"),
                "recursive": boolean("List contents recursively (default: false)"),
                "show_hidden": boolean("Show hidden files (default: false)"),
            },
            ["path"],
        ),
        category=ToolCategory.FILESYSTEM,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        raw = str_arg(args, "path")
        p = resolve_path(ctx.cwd, raw)
        if not p.exists():
            raise ToolError(f"path not found: {raw}")
        if not p.is_dir():
            raise ToolError("path is not a directory")
        show_hidden = bool(args.get("show_hidden"))

        out = [f"Directory: {raw}", ""]
        if args.get("recursive"):
            for root, dirs, files in os.walk(p):
                rootp = Path(root)
                dirs[:] = sorted(
                    d for d in dirs if (show_hidden or not is_hidden(d)) and not ctx.is_denied(rootp / d)
                )
                for d in dirs:
                    out.append(f"[dir]  {(rootp / d).relative_to(p)}")
                for f in sorted(files):
                    if not show_hidden and is_hidden(f):
                        continue
                    if ctx.is_denied(rootp / f):
                        continue
                    out.append(f"[file] {(rootp / f).relative_to(p)}")
        else:
            try:
                children = sorted(p.iterdir(), key=lambda x: x.name)
            except OSError as e:
                raise ToolError(f"failed to read directory: {e}")
            children = [c for c in children if (show_hidden or not is_hidden(c.name)) and not ctx.is_denied(c)]
            out.extend(f"[dir]  {c.name}/" for c in children if c.is_dir())
            out.extend(f"[file] {c.name}" for c in children if not c.is_dir())
        return "\n".join(out) + "\n"


def _glob(ctx: ToolContext, base: Path, pattern: str, limit: int) -> list[str]:
    matches: list[str] = []
    if "**" in pattern:
        prefix, _, suffix = pattern.partition("**")
        prefix = prefix.rstrip("/")
        suffix = suffix.lstrip("/")
        search = base / prefix if prefix else base
        for root, dirs, files in os.walk(search):
            dirs[:] = sorted(d for d in dirs if not ctx.is_denied(os.path.join(root, d)))
            for f in sorted(files):
                if suffix and not fnmatch.fnmatch(f, suffix):
                    continue
                if ctx.is_denied(os.path.join(root, f)):
                    continue
                matches.append(os.path.relpath(os.path.join(root, f), base))
                if len(matches) >= limit:
                    return matches
        return matches
    for m in sorted(base.glob(pattern)):
        if ctx.is_denied(m):
            continue
        matches.append(os.path.relpath(m, base))
        if len(matches) >= limit:
            break
    return matches


class GlobSearchTool:
    spec = ToolSpec(
        name="glob_search",
        description="Find files matching a glob pattern. Supports ** for recursive matching.",
        parameters=object_schema(
            {
                "pattern": string("Glob pattern to match (e.g., '**/*.py', 'src/**/*.ts')"),
                "path": string("Base directory to search in (default: current directory)"),
                "limit": integer(f"Maximum number of results (default: {DEFAULT_GLOB_LIMIT})"),
            },
            ["pattern"],
        ),
        category=ToolCategory.FILESYSTEM,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        pattern = str_arg(args, "pattern")
        if not pattern:
            raise ToolError("pattern is required")
        base = resolve_path(ctx.cwd, str_arg(args, "path") or ".")
        limit = int_arg(args, "limit", DEFAULT_GLOB_LIMIT)
        if limit <= 0:
            limit = DEFAULT_GLOB_LIMIT
        try:
            matches = _glob(ctx, base, pattern, limit)
        except ValueError as e:
            raise ToolError(f"invalid glob pattern: {e}")

        if not matches:
            return f"No files found matching pattern: {pattern}"
        out = [f"Found {len(matches)} files matching '{pattern}':", ""]
        out.extend(matches)
        if len(matches) == limit:
            out.append(f"\n(limited to {limit} results)")
        return "\n".join(out) + "\n"
