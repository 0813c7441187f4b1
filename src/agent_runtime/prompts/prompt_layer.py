"""Prompt layer for the run loop's model-facing text.

Corrective retry messages, tool feedback and prompted-output instructions
live in ``templates/*.txt``. A directory set via ``settings.prompts_dir``
is searched first, so deployments can reword any template without code
changes.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

_cache: dict[str, str] = {}


def _search_dirs() -> list[Path]:
    from agent_runtime.config import settings

    dirs = [TEMPLATES_DIR]
    if settings.prompts_dir:
        dirs.insert(0, Path(settings.prompts_dir).expanduser())
    return dirs


def load_prompt(name: str) -> str:
    """Return the raw template ``name`` with its {placeholders} intact."""
    if name in _cache:
        return _cache[name]
    for directory in _search_dirs():
        path = directory / f"{name}.txt"
        if path.is_file():
            logger.debug("Loaded prompt '%s' from %s", name, path)
            _cache[name] = path.read_text(encoding="utf-8").strip()
            return _cache[name]
    raise FileNotFoundError(f"Prompt template '{name}' not found in {', '.join(map(str, _search_dirs()))}")


def render_prompt(name: str, **kwargs: object) -> str:
    return load_prompt(name).format(**kwargs)


def list_prompts() -> list[str]:
    names: set[str] = set()
    for directory in _search_dirs():
        if directory.is_dir():
            names.update(p.stem for p in directory.glob("*.txt"))
    return sorted(names)


def clear_cache() -> None:
    _cache.clear()
