"""Tests for the read-only workspace tools used by the CLI agent."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_runtime.errors import ModelRetry, ToolArgumentsInvalid
from agent_runtime.tools.workspace_tools import create_workspace_tools


def _tools(root: Path) -> dict:
    return {tool.name: tool for tool in create_workspace_tools(root)}


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a sample project structure."""
    (tmp_path / "app.py").write_text(
        "class Validator:\n"
        "    def validate(self, data):\n"
        "        pass\n"
        "\n"
        "def helper():\n"
        "    return 42\n"
    )
    (tmp_path / "utils.py").write_text("import os\ndef helper():\n    return os.getcwd()\n")
    sub = tmp_path / "sub"
    sub.mkdir()
    (sub / "mod.py").write_text("# empty module\n")
    (sub / "data.txt").write_text("some data line\nanother line\n")
    return tmp_path


def test_tool_names(workspace: Path):
    assert sorted(_tools(workspace)) == ["find_files", "grep", "list_directory", "read_file"]


class TestGrep:
    @pytest.mark.asyncio
    async def test_basic_search(self, workspace: Path):
        result = await _tools(workspace)["grep"].call({"pattern": "def helper"})
        assert "app.py:5: def helper():" in result
        assert "utils.py:2: def helper():" in result

    @pytest.mark.asyncio
    async def test_include_filter(self, workspace: Path):
        result = await _tools(workspace)["grep"].call({"pattern": "line", "include": "*.txt"})
        assert "data.txt" in result
        assert ".py" not in result

    @pytest.mark.asyncio
    async def test_single_file(self, workspace: Path):
        result = await _tools(workspace)["grep"].call({"pattern": "data", "path": "sub/data.txt"})
        assert "sub/data.txt:1:" in result

    @pytest.mark.asyncio
    async def test_invalid_regex_falls_back_to_literal(self, workspace: Path):
        result = await _tools(workspace)["grep"].call({"pattern": "def helper("})
        assert "def helper()" in result

    @pytest.mark.asyncio
    async def test_no_matches(self, workspace: Path):
        result = await _tools(workspace)["grep"].call({"pattern": "nonexistent_xyz"})
        assert "No matches" in result

    @pytest.mark.asyncio
    async def test_pattern_is_required(self, workspace: Path):
        with pytest.raises(ToolArgumentsInvalid, match="pattern"):
            await _tools(workspace)["grep"].call({})


class TestFiles:
    @pytest.mark.asyncio
    async def test_read_file_numbers_lines(self, workspace: Path):
        result = await _tools(workspace)["read_file"].call({"path": "app.py", "offset": 4, "limit": 1})
        assert result == "File: app.py\n   5 | def helper():"

    @pytest.mark.asyncio
    async def test_read_missing_file_asks_for_retry(self, workspace: Path):
        with pytest.raises(ModelRetry, match="File not found"):
            await _tools(workspace)["read_file"].call({"path": "nope.py"})

    @pytest.mark.asyncio
    async def test_paths_outside_workspace_are_refused(self, workspace: Path):
        with pytest.raises(ModelRetry, match="outside the workspace"):
            await _tools(workspace)["read_file"].call({"path": "../secret.txt"})

    @pytest.mark.asyncio
    async def test_list_directory(self, workspace: Path):
        result = await _tools(workspace)["list_directory"].call({})
        assert result.splitlines() == ["app.py", "sub/", "utils.py"]

    @pytest.mark.asyncio
    async def test_find_files(self, workspace: Path):
        result = await _tools(workspace)["find_files"].call({"pattern": "*.py"})
        assert result.splitlines() == ["app.py", "sub/mod.py", "utils.py"]
