"""Shared fixtures for agentflow tests."""

import io
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import EngineSettings
from agentflow.interfaces import LLMClient, LLMResponse
from agentflow.runtime_data import ExecutionContext, StepResult
from agentflow.tools import ToolRegistry
from agentflow.workflows import WorkflowEngine

from .fakes import RecordingTool


@pytest.fixture
def settings():
    """Engine settings without retry jitter."""
    return EngineSettings(retry_jitter_max_seconds=0.0)


@pytest.fixture
def mock_llm():
    """LLM client mock answering every prompt with a fixed completion."""
    client = MagicMock(spec=LLMClient)
    client.complete = AsyncMock(
        return_value=LLMResponse(content="llm answer", tokens_used=10, cost=0.5)
    )
    client.complete_with_system = AsyncMock(
        return_value=LLMResponse(content="system answer", tokens_used=20, cost=1.0)
    )
    return client


@pytest.fixture
def tool_registry():
    registry = ToolRegistry()
    registry.register(RecordingTool())
    return registry


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def engine(tool_registry, mock_llm, output, settings):
    """Engine wired to mocks and writing display output to a buffer."""
    return WorkflowEngine(
        tool_registry=tool_registry,
        llm_client=mock_llm,
        output_stream=output,
        settings=settings,
    )


@pytest.fixture
def context():
    """Context with a couple of step results and data values."""
    ctx = ExecutionContext(data={"user": "alice", "count": 3})
    ctx.set_step_result(
        "fetch",
        StepResult(
            step_name="fetch",
            success=True,
            output={"items": [{"name": "a", "size": 1}, {"name": "b", "size": 2}], "total": 2},
        ),
    )
    ctx.set_step_result(
        "ask", StepResult(step_name="ask", success=True, output={"response": "yes"})
    )
    ctx.set_step_result(
        "broken", StepResult(step_name="broken", success=False, error="boom")
    )
    return ctx
