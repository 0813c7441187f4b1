"""Read-only file tools rooted at a workspace directory."""

from __future__ import annotations

import fnmatch
import re
from pathlib import Path

from agent_runtime.errors import ModelRetry
from agent_runtime.tools import Tool

MAX_GREP_MATCHES = 200
MAX_FIND_RESULTS = 500


def create_workspace_tools(root: Path) -> list[Tool]:
    root = root.resolve()

    def _resolve(path: str) -> Path:
        resolved = (root / path).resolve()
        if resolved != root and root not in resolved.parents:
            raise ModelRetry(f"Path '{path}' is outside the workspace")
        return resolved

    def read_file(path: str, offset: int = 0, limit: int | None = None) -> str:
        target = _resolve(path)
        if not target.is_file():
            raise ModelRetry(f"File not found: {path}")
        lines = target.read_text(encoding="utf-8", errors="replace").splitlines()
        end = offset + limit if limit else len(lines)
        numbered = [f"{i + offset + 1:>4} | {line}" for i, line in enumerate(lines[offset:end])]
        return f"File: {path}\n" + "\n".join(numbered)

    def list_directory(path: str = ".") -> str:
        target = _resolve(path)
        if not target.is_dir():
            raise ModelRetry(f"Not a directory: {path}")
        entries = [f"{p.name}/" if p.is_dir() else p.name for p in sorted(target.iterdir())]
        return "\n".join(entries) if entries else "(empty directory)"

    def find_files(pattern: str, path: str = ".") -> str:
        results: list[str] = []
        for fpath in sorted(_resolve(path).rglob("*")):
            if fpath.is_file() and fnmatch.fnmatch(fpath.name, pattern):
                results.append(str(fpath.relative_to(root)))
            if len(results) >= MAX_FIND_RESULTS:
                results.append(f"... (truncated at {MAX_FIND_RESULTS} results)")
                break
        return "\n".join(results) if results else f"No files matching '{pattern}'"

    def grep(pattern: str, path: str = ".", include: str | None = None) -> str:
        try:
            regex = re.compile(pattern)
        except re.error:
            regex = re.compile(re.escape(pattern))
        target = _resolve(path)
        files = [target] if target.is_file() else sorted(p for p in target.rglob("*") if p.is_file())
        matches: list[str] = []
        for fpath in files:
            if include and not fnmatch.fnmatch(fpath.name, include):
                continue
            try:
                text = fpath.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            rel = fpath.relative_to(root)
            for i, line in enumerate(text.splitlines(), 1):
                if regex.search(line):
                    matches.append(f"{rel}:{i}: {line.rstrip()}")
                    if len(matches) >= MAX_GREP_MATCHES:
                        matches.append(f"... (truncated at {MAX_GREP_MATCHES} matches)")
                        return "\n".join(matches)
        return "\n".join(matches) if matches else f"No matches for '{pattern}'"

    return [
        Tool(
            name="read_file",
            description="Read a file from the workspace. Use offset/limit for large files.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path relative to the workspace"},
                    "offset": {"type": "integer", "description": "Starting line (0-based)"},
                    "limit": {"type": "integer", "description": "Max lines to return"},
                },
                "required": ["path"],
            },
            function=read_file,
        ),
        Tool(
            name="list_directory",
            description="List files and directories in the given path.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Directory path (default: '.')"},
                },
                "required": [],
            },
            function=list_directory,
        ),
        Tool(
            name="find_files",
            description="Find files by name pattern (glob), searching recursively from path.",
            parameters={
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Glob for file names, e.g. '*.py'"},
                    "path": {"type": "string", "description": "Directory to search (default: '.')"},
                },
                "required": ["pattern"],
            },
            function=find_files,
        ),
        Tool(
            name="grep",
            description=(
                "Search file contents for a pattern (regex or literal). "
                "Returns matching lines as file:line: text."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Regex or literal string"},
                    "path": {"type": "string", "description": "Directory or file to search (default: '.')"},
                    "include": {"type": "string", "description": "Glob to filter files, e.g. '*.py'"},
                },
                "required": ["pattern"],
            },
            function=grep,
        ),
    ]
