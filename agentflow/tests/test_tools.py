"""Tests for the tool registry and built-in tools."""

import io
import threading

import pytest

from agentflow.runtime_data import ExecutionContext
from agentflow.tools import (
    AskUserTool,
    ListFilesTool,
    ReadFileTool,
    ToolError,
    ToolRegistry,
    create_default_registry,
)
from agentflow.workflows import StepDefinition
from agentflow.workflows.steps import call_tool

from .fakes import RecordingTool


class TestToolRegistry:
    def test_register_and_lookup(self):
        registry = ToolRegistry()
        tool = registry.register(RecordingTool(name="b"))
        registry.register(RecordingTool(name="a"))

        assert registry.get_tool("b") is tool
        assert registry.get_tool("missing") is None
        assert registry.list_tools() == ["a", "b"]
        assert "a" in registry

    def test_rejects_non_tools(self):
        with pytest.raises(TypeError):
            ToolRegistry().register(object())

    def test_default_registry(self):
        assert create_default_registry().list_tools() == ["ask_user", "list_files", "read_file"]


class TestFileTools:
    def test_read_file(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")

        result = ReadFileTool().execute_tool({"path": str(path)})

        assert result == {"path": str(path), "content": "hello", "size": 5, "success": True}

    def test_read_file_errors(self, tmp_path):
        tool = ReadFileTool()
        with pytest.raises(ToolError, match="path parameter is required"):
            tool.execute_tool({})
        with pytest.raises(ToolError, match="file does not exist"):
            tool.execute_tool({"path": str(tmp_path / "nope")})

        big = tmp_path / "big.txt"
        big.write_text("x" * 100)
        with pytest.raises(ToolError, match="file too large"):
            tool.execute_tool({"path": str(big), "max_size": 10})

    def test_list_files(self, tmp_path):
        (tmp_path / "b.txt").write_text("bb")
        (tmp_path / "a").mkdir()

        result = ListFilesTool().execute_tool({"path": str(tmp_path)})

        assert result["file_count"] == 2
        assert [(f["name"], f["type"]) for f in result["files"]] == [("a", "directory"), ("b.txt", "file")]

    def test_list_missing_directory(self, tmp_path):
        with pytest.raises(ToolError, match="failed to list directory"):
            ListFilesTool().execute_tool({"path": str(tmp_path / "nope")})


class TestAskUserTool:
    @pytest.mark.asyncio
    async def test_reads_one_line(self):
        prompt = io.StringIO()
        tool = AskUserTool(input_stream=io.StringIO("  blue \nignored\n"), output_stream=prompt)

        result = await tool.execute_tool({"question": "Favourite colour?"})

        assert result == {"response": "blue", "success": True}
        assert prompt.getvalue() == "Favourite colour? "

    @pytest.mark.asyncio
    async def test_closed_input_uses_default(self):
        tool = AskUserTool(input_stream=io.StringIO(""), output_stream=io.StringIO())

        result = await tool.execute_tool({"question": "Continue?", "default_response": "no"})

        assert result["response"] == "no"

    @pytest.mark.asyncio
    async def test_closed_input_without_default(self):
        tool = AskUserTool(input_stream=io.StringIO(""), output_stream=io.StringIO())
        with pytest.raises(ToolError, match="input stream closed"):
            await tool.execute_tool({"question": "Continue?"})

    @pytest.mark.asyncio
    async def test_late_answer_is_kept_for_next_question(self):
        class SlowInput:
            def __init__(self):
                self.release = threading.Event()
                self.reads = 0

            def readline(self):
                self.reads += 1
                self.release.wait(timeout=5)
                return "late answer\n"

        stream = SlowInput()
        tool = AskUserTool(input_stream=stream, output_stream=io.StringIO())

        with pytest.raises(ToolError, match="user input timeout after 0.05s"):
            await tool.execute_tool({"question": "First?", "timeout": 0.05})
        stream.release.set()
        result = await tool.execute_tool({"question": "Second?", "timeout": 1.0})

        assert result == {"response": "late answer", "success": True}
        assert stream.reads == 1

    @pytest.mark.asyncio
    async def test_question_is_required(self):
        with pytest.raises(ToolError, match="question parameter is required"):
            await AskUserTool().execute_tool({})

    @pytest.mark.asyncio
    async def test_answer_drives_a_skip_condition(self, engine, tool_registry):
        tool_registry.register(
            AskUserTool(input_stream=io.StringIO("yes\n"), output_stream=io.StringIO())
        )
        context = ExecutionContext()
        ask = StepDefinition.from_dict(
            {"name": "ask", "type": "tool", "config": {"tool": "ask_user", "params": {"question": "Deploy?"}}}
        )
        deploy = StepDefinition.from_dict(
            {
                "name": "deploy",
                "type": "display",
                "config": {"text": "deploying after {ask}"},
                "conditions": [{"field": "ask", "operator": "equals", "value": "yes"}],
            }
        )

        await engine.execute_step(ask, context)
        result = await engine.execute_step(deploy, context)

        assert result.output == "deploying after yes"


class TestCallTool:
    @pytest.mark.asyncio
    async def test_sync_tools_run_in_a_thread(self):
        tool = RecordingTool(result="sync")
        assert await call_tool(tool, {"a": 1}) == "sync"
        assert tool.calls == [{"a": 1}]
