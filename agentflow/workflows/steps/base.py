"""
Base Step

Abstract base class for step executors and the runtime they share.
"""

import asyncio
import inspect
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TextIO

from config import EngineSettings
from ...interfaces import LLMClient, LLMResponse, ToolInterface
from ...runtime_data import ExecutionContext, StepResult
from ...tools import ToolRegistry
from ..definition import StepDefinition
from ..errors import ConfigurationError
from ..expressions import ExpressionResolver


@dataclass
class StepRuntime:
    """
    Collaborators shared by every step executor of one engine.

    ``execute_step`` runs a step through the full state machine (conditions,
    transforms, retries) and is used by steps that contain other steps.
    """

    resolver: ExpressionResolver
    tool_registry: ToolRegistry
    settings: EngineSettings
    execute_step: Callable[[StepDefinition, ExecutionContext], Awaitable[StepResult]]
    llm_client: Optional[LLMClient] = None
    output_stream: Optional[TextIO] = None

    def write(self, text: str):
        """Write user-facing text to the output stream (stdout by default)."""
        stream = self.output_stream or sys.stdout
        stream.write(text)
        stream.flush()

    def require_llm(self) -> LLMClient:
        if self.llm_client is None:
            raise ConfigurationError("no LLM client configured")
        return self.llm_client


async def call_tool(tool: ToolInterface, arguments: Dict[str, Any]) -> Any:
    """Invoke a tool, awaiting async tools and running sync ones in a worker thread."""
    if inspect.iscoroutinefunction(tool.execute_tool):
        return await tool.execute_tool(arguments)
    result = await asyncio.to_thread(tool.execute_tool, arguments)
    if inspect.isawaitable(result):
        result = await result
    return result


class BaseStepExecutor(ABC):
    """
    Abstract base class for step executors.

    One executor instance handles one invocation of one step. All step
    types must inherit from this class and implement ``execute``.
    """

    def __init__(self, step: StepDefinition, runtime: StepRuntime):
        """
        Initialize step executor.

        Args:
            step: Step definition from the workflow
            runtime: Shared engine collaborators
        """
        self.step = step
        self.runtime = runtime

    @property
    def config(self) -> Dict[str, Any]:
        return self.step.config

    @abstractmethod
    async def execute(self, context: ExecutionContext) -> Any:
        """
        Execute the step once.

        Args:
            context: Workflow execution context

        Returns:
            Step output

        Raises:
            ConfigurationError: If the step configuration is invalid
            Exception: If step execution fails
        """
        pass

    def result_metadata(self, output: Any) -> Dict[str, Any]:
        """Metadata to record on a successful StepResult."""
        return {}

    def require_string(self, key: str, message: Optional[str] = None) -> str:
        value = self.config.get(key)
        if not isinstance(value, str):
            raise ConfigurationError(message or f"{key} not specified in step config")
        return value

    def render(self, template: str, context: ExecutionContext) -> str:
        return self.runtime.resolver.render(template, context)

    async def complete(self, context: ExecutionContext) -> LLMResponse:
        """Render ``prompt`` (and ``system_prompt``) and ask the LLM client."""
        prompt = self.render(self.require_string("prompt"), context)
        llm = self.runtime.require_llm()

        system_prompt = self.config.get("system_prompt")
        if isinstance(system_prompt, str) and system_prompt:
            response = await llm.complete_with_system(self.render(system_prompt, context), prompt)
        else:
            response = await llm.complete(prompt)

        context.record_llm_usage(response.tokens_used, response.cost)
        return response
