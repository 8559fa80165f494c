"""
LLM With Tools Step

Lets an LLM look at files through the read-only ``read_file`` and
``list_files`` tools. Tool use is inferred from the wording of the first
response; only allowed tools on allowed paths are run, bounded by
``max_tool_calls``, and the results are sent back for a final answer.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from config import EngineSettings
from ...runtime_data import ExecutionContext
from ..errors import ConfigurationError, StepExecutionError
from .base import BaseStepExecutor, call_tool

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_TOOLS = ["read_file", "list_files"]
DEFAULT_SAFE_PATHS = ["pkg/", "./pkg/", "cmd/", "./cmd/", "examples/", "./examples/"]

TOOL_INDICATORS = (
    "let me check",
    "i'll examine",
    "let me look at",
    "i need to verify",
    "let me search",
    "i should read",
    "let me find",
    "i'll investigate",
)

FILE_OPERATIONS = (
    "read the file",
    "examine the code",
    "look at the implementation",
    "check the source",
    "verify the code",
)

MAX_CONTENT_CHARS = 2000

WITH_TOOLS_BANNER = "=== LLM ANALYSIS WITH TOOLS ==="
TOOL_EXECUTIONS_BANNER = "=== TOOL EXECUTIONS ==="
END_BANNER = "=== END ANALYSIS ==="


class ToolExecution(BaseModel):
    """One tool invocation made on behalf of the LLM"""

    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)
    result: str = ""
    success: bool = False
    error: Optional[str] = None


class LLMWithToolsConfig(BaseModel):
    """Decoded ``config.tool_config`` of an llm_with_tools step"""

    max_tool_calls: int = 3
    max_file_size: int = 10240
    fail_on_tool_error: bool = True
    allowed_tools: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    allowed_paths: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    directories: List[str] = Field(default_factory=list)

    @classmethod
    def from_config(
        cls, tool_config: Any, settings: Optional[EngineSettings] = None
    ) -> "LLMWithToolsConfig":
        """
        Decode a ``tool_config`` mapping, using settings for the numeric defaults.

        Raises:
            ConfigurationError: If ``tool_config`` is not a mapping
        """
        values: Dict[str, Any] = {}
        if settings is not None:
            values["max_tool_calls"] = settings.llm_tools_max_calls
            values["max_file_size"] = settings.llm_tools_max_file_size

        if tool_config is None:
            return cls(**values)
        if not isinstance(tool_config, dict):
            raise ConfigurationError("tool_config must be a mapping")

        for key in ("max_tool_calls", "max_file_size"):
            value = tool_config.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                values[key] = int(value)
        if isinstance(tool_config.get("fail_on_tool_error"), bool):
            values["fail_on_tool_error"] = tool_config["fail_on_tool_error"]
        for key in ("allowed_tools", "allowed_paths", "files", "directories"):
            value = tool_config.get(key)
            if isinstance(value, list):
                values[key] = [item for item in value if isinstance(item, str)]

        config = cls(**values)
        if not config.allowed_tools:
            config.allowed_tools = list(DEFAULT_ALLOWED_TOOLS)
        return config

    def is_tool_allowed(self, tool: str) -> bool:
        return tool in self.allowed_tools

    def is_path_allowed(self, path: str) -> bool:
        """
        Check a path against the allowed prefixes.

        Paths and prefixes are normalised first and compared by whole
        components, so ``pkg/../secret`` is not under ``pkg/`` and a path
        that climbs out through ``..`` is never allowed.
        """
        normalized = os.path.normpath(path)
        if normalized == os.pardir or normalized.startswith(os.pardir + os.sep):
            return False

        for prefix in self.allowed_paths or DEFAULT_SAFE_PATHS:
            root = os.path.normpath(prefix)
            if root == os.curdir:
                if not os.path.isabs(normalized):
                    return True
            elif normalized == root or normalized.startswith(root.rstrip(os.sep) + os.sep):
                return True
        return False


def should_use_tools(response: str) -> bool:
    """Whether a response reads like the LLM wants to inspect files."""
    lowered = response.lower()
    return any(phrase in lowered for phrase in TOOL_INDICATORS + FILE_OPERATIONS)


def format_tool_results(executions: List[ToolExecution]) -> str:
    parts = []
    for execution in executions:
        if execution.success:
            parts.append(f"Tool: {execution.tool}\n{execution.result}")
        else:
            parts.append(f"Tool: {execution.tool} (FAILED)\nError: {execution.error}")
    return "\n\n".join(parts)


class LLMWithToolsStep(BaseStepExecutor):
    """
    Ask the LLM, run the file tools its answer calls for, then ask again.

    Returns the final response text. Tokens and cost of every completion
    are added to the execution metrics.
    """

    def __init__(self, step, runtime):
        super().__init__(step, runtime)
        self.tool_executions: List[ToolExecution] = []

    async def execute(self, context: ExecutionContext) -> Any:
        prompt = self.render(self.require_string("prompt"), context)
        config = LLMWithToolsConfig.from_config(
            self.config.get("tool_config"), self.runtime.settings
        )
        llm = self.runtime.require_llm()

        response = await llm.complete(prompt)
        context.record_llm_usage(response.tokens_used, response.cost)
        final_response = response.content

        self.tool_executions = []
        if should_use_tools(response.content) and config.max_tool_calls > 0:
            logger.info(
                f"LLM response indicates tool usage needed: {response.content[:200]!r}"
            )
            self.tool_executions = await self.run_tools(response.content, config)

            failed = [e for e in self.tool_executions if not e.success]
            if failed and config.fail_on_tool_error:
                raise StepExecutionError(
                    f"tool execution failed: {[f'{e.tool}: {e.error}' for e in failed]}",
                    step_name=self.step.name,
                )

            if self.tool_executions:
                follow_up_prompt = (
                    f"{prompt}\n\nTool execution results:\n"
                    f"{format_tool_results(self.tool_executions)}\n\n"
                    "Based on these results, please provide your final analysis:"
                )
                try:
                    follow_up = await llm.complete(follow_up_prompt)
                except Exception as e:
                    logger.error(f"Follow-up LLM call failed for step '{self.step.name}': {e}")
                else:
                    context.record_llm_usage(follow_up.tokens_used, follow_up.cost)
                    final_response = follow_up.content

        logger.info(
            f"LLM with tools step '{self.step.name}' completed: "
            f"{len(self.tool_executions)} tool calls, {len(final_response)} chars"
        )
        self.display(final_response)
        return final_response

    def result_metadata(self, output: Any) -> Dict[str, Any]:
        return {"tool_calls_used": len(self.tool_executions)}

    async def run_tools(self, response: str, config: LLMWithToolsConfig) -> List[ToolExecution]:
        executions: List[ToolExecution] = []
        lowered = response.lower()

        if any(word in lowered for word in ("read", "file", "code")) and config.is_tool_allowed("read_file"):
            for path in config.files:
                if len(executions) >= config.max_tool_calls:
                    break
                if not config.is_path_allowed(path):
                    logger.warning(f"File access denied by security policy: {path}")
                    continue
                executions.append(await self.read_file(path, config.max_file_size))

        if any(word in lowered for word in ("list", "directory")) and config.is_tool_allowed("list_files"):
            for directory in config.directories:
                if len(executions) >= config.max_tool_calls:
                    break
                if not config.is_path_allowed(directory):
                    logger.warning(f"Directory access denied by security policy: {directory}")
                    continue
                executions.append(await self.list_files(directory))

        return executions

    async def read_file(self, path: str, max_size: int) -> ToolExecution:
        params = {"path": path, "max_size": max_size}
        result = await self._invoke("read_file", params)
        if isinstance(result, ToolExecution):
            return result

        content = result.get("content") if isinstance(result, dict) else None
        text = ""
        if isinstance(content, str):
            if len(content) > MAX_CONTENT_CHARS:
                content = content[:MAX_CONTENT_CHARS] + "\n... (truncated)"
            text = f"Content of {path}:\n{content}"
        return ToolExecution(tool="read_file", params=params, result=text, success=True)

    async def list_files(self, directory: str) -> ToolExecution:
        params = {"path": directory}
        result = await self._invoke("list_files", params)
        if isinstance(result, ToolExecution):
            return result

        listing = json.dumps(result, default=str)
        return ToolExecution(
            tool="list_files", params=params, result=f"Files in {directory}: {listing}", success=True
        )

    async def _invoke(self, tool_name: str, params: Dict[str, Any]) -> Any:
        """Run a tool; failures come back as a failed ToolExecution."""
        tool = self.runtime.tool_registry.get_tool(tool_name)
        if tool is None:
            return ToolExecution(tool=tool_name, error=f"{tool_name} tool not available")
        try:
            return await call_tool(tool, params)
        except Exception as e:
            logger.warning(f"Tool '{tool_name}' failed for {params}: {e}")
            return ToolExecution(tool=tool_name, params=params, error=str(e))

    def display(self, final_response: str):
        lines = [WITH_TOOLS_BANNER, "", final_response]
        if self.tool_executions:
            lines.append(TOOL_EXECUTIONS_BANNER)
            for execution in self.tool_executions:
                lines.append(f"Tool: {execution.tool}\nResult: {execution.result}\n")
        lines.extend([END_BANNER, ""])
        self.runtime.write("\n".join(lines) + "\n")
