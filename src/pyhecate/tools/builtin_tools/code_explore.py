from __future__ import annotations

import fnmatch
import os
import re
import shutil
import subprocess
from typing import Any

from ..base import ToolCategory, ToolContext, ToolError, ToolSpec, boolean, int_arg, integer, object_schema, str_arg, string
from ...util.fs import resolve_path
from ...util.subprocess import run_cmd

DEFAULT_GREP_LIMIT = 50
DEFAULT_CONTEXT = 10


def _is_binary(path: str) -> bool:
    try:
        with open(path, "rb") as f:
            head = f.read(512)
    except OSError:
        return True
    return not head or b"\x00" in head


def drop_denied_lines(output: str, ctx: ToolContext) -> str:
    """Remove ripgrep lines (printed with --null) whose file is denied.

    A single-file search prints no file names; that file was already
    checked as the call's ``path``.
    """
    kept: list[str] = []
    for line in output.splitlines():
        path, sep, rest = line.partition("\0")
        if not sep:
            kept.append(line)
            continue
        if ctx.is_denied(path):
            continue
        # context lines use "-" after the line number, matches use ":"
        joiner = ":" if re.match(r"\d+:", rest) else "-"
        kept.append(f"{path}{joiner}{rest}")
    return "\n".join(kept) + ("\n" if kept else "")


class GrepSearchTool:
    spec = ToolSpec(
        name="grep_search",
        description="Search for a pattern in files using regular expressions. Similar to grep/ripgrep.",
        parameters=object_schema(
            {
                "pattern": string("Regular expression pattern to search for"),
                "path": string("File or directory to search in (default: current directory)"),
                "glob": string("Glob pattern to filter files (e.g., '*.py', '*.{ts,tsx}')"),
                "context_lines": integer("Number of lines to show before/after each match (default: 0)"),
                "case_insensitive": boolean("Perform case-insensitive search (default: false)"),
                "limit": integer(f"Maximum number of matches to return (default: {DEFAULT_GREP_LIMIT})"),
            },
            ["pattern"],
        ),
        category=ToolCategory.CODE_EXPLORE,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        pattern = str_arg(args, "pattern")
        if not pattern:
            raise ToolError("pattern is required")
        target = str(resolve_path(ctx.cwd, str_arg(args, "path") or "."))
        limit = int_arg(args, "limit", DEFAULT_GREP_LIMIT)
        if limit <= 0:
            limit = DEFAULT_GREP_LIMIT

        rg = shutil.which("rg")
        if rg:
            return self._ripgrep(ctx, rg, pattern, target, args, limit)
        return self._scan(ctx, pattern, target, args, limit)

    def _ripgrep(self, ctx: ToolContext, rg: str, pattern: str, target: str, args: dict[str, Any], limit: int) -> str:
        cmd = [rg, "--line-number", "--no-heading", "--null", "--max-count", str(limit)]
        if args.get("case_insensitive"):
            cmd.append("-i")
        context = int_arg(args, "context_lines", 0)
        if context > 0:
            cmd += ["-C", str(context)]
        glob = str_arg(args, "glob")
        if glob:
            cmd += ["-g", glob]
        cmd += ["--", pattern, target]
        try:
            res = run_cmd(cmd, cwd=ctx.cwd, timeout=ctx.timeout)
        except subprocess.TimeoutExpired:
            raise ToolError("ripgrep timed out")
        if res.returncode == 1 or (res.returncode == 0 and not res.stdout):
            return f"No matches found for pattern: {pattern}"
        if res.returncode != 0:
            raise ToolError(f"ripgrep error: {res.stderr.strip() or res.returncode}")
        out = drop_denied_lines(res.stdout, ctx)
        if not out.strip():
            return f"No matches found for pattern: {pattern}"
        return f"Search results for '{pattern}':\n\n{out}"

    def _scan(self, ctx: ToolContext, pattern: str, target: str, args: dict[str, Any], limit: int) -> str:
        flags = re.IGNORECASE if args.get("case_insensitive") else 0
        try:
            rx = re.compile(pattern, flags)
        except re.error as e:
            raise ToolError(f"invalid regex pattern: {e}")
        glob = str_arg(args, "glob")

        if os.path.isfile(target):
            base = os.path.dirname(target)
            files = [target]
        else:
            base = target
            files = []
            for root, dirs, names in os.walk(target):
                dirs[:] = sorted(d for d in dirs if not ctx.is_denied(os.path.join(root, d)))
                for n in sorted(names):
                    path = os.path.join(root, n)
                    if not ctx.is_denied(path):
                        files.append(path)

        matches: list[str] = []
        for path in files:
            if glob and not fnmatch.fnmatch(os.path.basename(path), glob):
                continue
            if _is_binary(path):
                continue
            rel = os.path.relpath(path, base)
            try:
                with open(path, encoding="utf-8", errors="replace") as f:
                    for i, line in enumerate(f, start=1):
                        line = line.rstrip("\n")
                        if rx.search(line):
                            matches.append(f"{rel}:{i}: {line}")
                            if len(matches) >= limit:
                                break
            except OSError:
                continue
            if len(matches) >= limit:
                break

        if not matches:
            return f"No matches found for pattern: {pattern}"
        return f"Found {len(matches)} matches for '{pattern}':\n\n" + "\n".join(matches) + "\n"


_LANG_EXTS = {
    "go": (".go",),
    "rust": (".rs",),
    "typescript": (".ts", ".tsx"),
    "javascript": (".js", ".jsx", ".mjs"),
    "python": (".py",),
    "erlang": (".erl", ".hrl"),
    "elixir": (".ex", ".exs"),
}

_CODE_EXTS = {
    ".go", ".rs", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".py",
    ".erl", ".hrl", ".ex", ".exs", ".c", ".cpp", ".h", ".hpp",
    ".java", ".kt", ".scala", ".rb", ".php", ".cs", ".swift", ".m",
    ".sh", ".bash", ".zsh", ".fish",
}


def _function_patterns(s: str, lang: str) -> list[str]:
    by_lang = {
        "go": [rf"func\s+{s}\s*\("],
        "rust": [rf"fn\s+{s}\s*[<(]"],
        "typescript": [
            rf"function\s+{s}\s*[<(]",
            rf"(const|let|var)\s+{s}\s*=\s*(async\s+)?\([^)]*\)\s*=>",
            rf"{s}\s*:\s*(async\s+)?\([^)]*\)\s*=>",
        ],
        "python": [rf"def\s+{s}\s*\("],
        "erlang": [rf"^{s}\s*\("],
        "elixir": [rf"def(p)?\s+{s}[(\s]"],
    }
    by_lang["javascript"] = by_lang["typescript"]
    return by_lang.get(lang, [rf"func\s+{s}\s*\(", rf"fn\s+{s}\s*[<(]", rf"function\s+{s}\s*[<(]", rf"def\s+{s}\s*\("])


def _type_patterns(s: str, lang: str) -> list[str]:
    by_lang = {
        "go": [rf"type\s+{s}\s+(struct|interface|=)"],
        "rust": [rf"(struct|enum|trait|type)\s+{s}[<\s{{]"],
        "typescript": [rf"(interface|type|class)\s+{s}[<\s{{]"],
        "javascript": [rf"(interface|type|class)\s+{s}[<\s{{]"],
        "python": [rf"class\s+{s}[(\s:]"],
        "erlang": [rf"-record\({s},"],
        "elixir": [rf"defmodule\s+{s}\s+do"],
    }
    return by_lang.get(lang, [rf"type\s+{s}", rf"(struct|enum|trait|interface|class)\s+{s}"])


def _variable_patterns(s: str, lang: str) -> list[str]:
    by_lang = {
        "go": [rf"var\s+{s}\s+", rf"{s}\s*:="],
        "rust": [rf"(let|const|static)\s+(mut\s+)?{s}\s*[=:]"],
        "typescript": [rf"(const|let|var)\s+{s}\s*[=:]"],
        "javascript": [rf"(const|let|var)\s+{s}\s*[=:]"],
        "python": [rf"^{s}\s*="],
    }
    return by_lang.get(lang, [rf"(var|let|const)\s+{s}\s*[=:]"])


def symbol_patterns(symbol: str, kind: str = "any", language: str = "") -> list[str]:
    s = re.escape(symbol)
    if kind == "function":
        return _function_patterns(s, language)
    if kind == "type":
        return _type_patterns(s, language)
    if kind == "variable":
        return _variable_patterns(s, language)
    return _function_patterns(s, language) + _type_patterns(s, language) + _variable_patterns(s, language)


class SymbolSearchTool:
    spec = ToolSpec(
        name="symbol_search",
        description="Find function, type, or variable definitions in code. Uses language-aware patterns.",
        parameters=object_schema(
            {
                "symbol": string("Symbol name to search for (function, type, variable)"),
                "type": {
                    "type": "string",
                    "description": "Type of symbol to search for",
                    "enum": ["function", "type", "variable", "any"],
                },
                "path": string("Directory to search in (default: current directory)"),
                "language": {
                    "type": "string",
                    "description": "Programming language hint",
                    "enum": sorted(_LANG_EXTS),
                },
            },
            ["symbol"],
        ),
        category=ToolCategory.CODE_EXPLORE,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        symbol = str_arg(args, "symbol")
        if not symbol:
            raise ToolError("symbol is required")
        base = str(resolve_path(ctx.cwd, str_arg(args, "path") or "."))
        language = str_arg(args, "language")
        regexes = [re.compile(p) for p in symbol_patterns(symbol, str_arg(args, "type") or "any", language)]
        wanted = _LANG_EXTS.get(language)

        found: list[str] = []
        seen: set[str] = set()
        for root, dirs, names in os.walk(base):
            dirs[:] = sorted(d for d in dirs if not d.startswith(".") and not ctx.is_denied(os.path.join(root, d)))
            for name in sorted(names):
                ext = os.path.splitext(name)[1]
                if ext not in _CODE_EXTS or (wanted and ext not in wanted):
                    continue
                path = os.path.join(root, name)
                if ctx.is_denied(path):
                    continue
                try:
                    with open(path, encoding="utf-8", errors="replace") as f:
                        lines = f.read().split("\n")
                except OSError:
                    continue
                rel = os.path.relpath(path, base)
                for rx in regexes:
                    for i, line in enumerate(lines, start=1):
                        if rx.search(line):
                            hit = f"{rel}:{i}: {line.strip()}"
                            if hit not in seen:
                                seen.add(hit)
                                found.append(hit)

        if not found:
            return f"No definitions found for symbol: {symbol}"
        return f"Found {len(found)} definitions for '{symbol}':\n\n" + "\n".join(found) + "\n"


class CodeContextTool:
    spec = ToolSpec(
        name="code_context",
        description="Get code surrounding a specific line. Useful for understanding context around a search match.",
        parameters=object_schema(
            {
                "path": string("Path to the file"),
                "line": integer("Line number to center the context on"),
                "context_lines": integer(f"Number of lines before/after to include (default: {DEFAULT_CONTEXT})"),
            },
            ["path", "line"],
        ),
        category=ToolCategory.CODE_EXPLORE,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        raw = str_arg(args, "path")
        line = int_arg(args, "line", 0)
        if not raw or line < 1:
            raise ToolError("path and line are required")
        context = int_arg(args, "context_lines", DEFAULT_CONTEXT)
        if context <= 0:
            context = DEFAULT_CONTEXT
        p = resolve_path(ctx.cwd, raw)
        try:
            lines = p.read_text(encoding="utf-8", errors="replace").split("\n")
        except OSError as e:
            raise ToolError(f"failed to read file: {e}")
        if line > len(lines):
            raise ToolError(f"line {line} is out of range (file has {len(lines)} lines)")

        start = max(0, line - context - 1)
        end = min(len(lines), line + context)
        out = [f"File: {raw} (lines {start + 1}-{end})", ""]
        for i in range(start, end):
            marker = ">" if i + 1 == line else " "
            out.append(f"{marker}{i + 1:5d}│ {lines[i]}")
        return "\n".join(out) + "\n"
