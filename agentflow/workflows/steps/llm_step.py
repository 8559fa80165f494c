"""
LLM Steps

``llm`` asks the LLM client for a completion; ``llm_display`` also shows
the answer to the user.
"""

from typing import Any

from ...runtime_data import ExecutionContext
from .base import BaseStepExecutor

RESULTS_BANNER = "=== LLM ANALYSIS RESULTS ==="
END_RESULTS_BANNER = "=== END ANALYSIS RESULTS ==="


class LLMStep(BaseStepExecutor):
    """Render ``config.prompt`` (and optional ``system_prompt``) and return the completion text."""

    async def execute(self, context: ExecutionContext) -> Any:
        response = await self.complete(context)
        return response.content


class LLMDisplayStep(BaseStepExecutor):
    async def execute(self, context: ExecutionContext) -> Any:
        response = await self.complete(context)
        self.runtime.write(f"{RESULTS_BANNER}\n\n{response.content}\n{END_RESULTS_BANNER}\n\n")
        return response.content
