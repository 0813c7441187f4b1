"""Pulling a JSON payload out of free-form model text."""

from __future__ import annotations

import json
import re
from typing import Any

from agent_runtime.errors import NoJsonFound

_FENCED_JSON = re.compile(r"```json[ \t]*\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_FENCED_ANY = re.compile(r"```[\w-]*[ \t]*\n?(.*?)```", re.DOTALL)

_MISSING = object()


def _try_loads(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except ValueError:
        return _MISSING


def _balanced_end(text: str, start: int, opener: str, closer: str) -> int | None:
    """Index of the bracket closing the one at ``start``, or None.

    Brackets inside string literals (including escaped quotes) are ignored.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
    return None


def _scan_balanced(text: str, opener: str, closer: str) -> Any:
    start = text.find(opener)
    while start != -1:
        end = _balanced_end(text, start, opener, closer)
        if end is not None:
            value = _try_loads(text[start : end + 1])
            if value is not _MISSING:
                return value
        start = text.find(opener, start + 1)
    return _MISSING


def extract_json(text: str) -> Any:
    """Return the first JSON value found in ``text``.

    Tried in order: a ```json fenced block, a plain fenced block opening the
    text, the first balanced ``{...}`` that parses (scanning left to right),
    the first balanced ``[...]`` that parses, then the whole text.

    Raises NoJsonFound when nothing parses.
    """
    for match in _FENCED_JSON.finditer(text):
        value = _try_loads(match.group(1).strip())
        if value is not _MISSING:
            return value

    stripped = text.strip()
    if stripped.startswith("```"):
        match = _FENCED_ANY.match(stripped)
        if match:
            value = _try_loads(match.group(1).strip())
            if value is not _MISSING:
                return value

    for opener, closer in (("{", "}"), ("[", "]")):
        value = _scan_balanced(text, opener, closer)
        if value is not _MISSING:
            return value

    value = _try_loads(stripped)
    if value is not _MISSING:
        return value
    raise NoJsonFound(text)
