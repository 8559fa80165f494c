"""
Tool Step

Invokes a registered tool with rendered parameters.
"""

import logging
from typing import Any, Dict

from ...runtime_data import ExecutionContext
from ..errors import ConfigurationError
from .base import BaseStepExecutor, call_tool

logger = logging.getLogger(__name__)


class ToolStep(BaseStepExecutor):
    """
    Run ``config.tool`` from the tool registry.

    String entries of ``config.params`` are rendered as templates; the
    execution data bag is then merged over the params.
    """

    async def execute(self, context: ExecutionContext) -> Any:
        tool_name = self.require_string("tool", "tool name not specified in step config")

        tool = self.runtime.tool_registry.get_tool(tool_name)
        if tool is None:
            raise ConfigurationError(f"tool {tool_name} not found")

        params = self.build_params(context)
        logger.debug(f"Step '{self.step.name}' invoking tool '{tool_name}' with {sorted(params)}")
        return await call_tool(tool, params)

    def build_params(self, context: ExecutionContext) -> Dict[str, Any]:
        params: Dict[str, Any] = {}

        step_params = self.config.get("params")
        if isinstance(step_params, dict):
            for key, value in step_params.items():
                params[key] = self.render(value, context) if isinstance(value, str) else value

        params.update(context.data_snapshot())
        return params
