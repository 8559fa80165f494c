"""
Display and Condition Steps
"""

import logging
from typing import Any

from ...runtime_data import ExecutionContext
from ..conditions import evaluate_simple_condition
from ..errors import ConfigurationError
from .base import BaseStepExecutor

logger = logging.getLogger(__name__)


class DisplayStep(BaseStepExecutor):
    """Show rendered ``config.text`` (or ``config.prompt``) to the user and return it."""

    async def execute(self, context: ExecutionContext) -> Any:
        text = self.config.get("text")
        if not isinstance(text, str):
            text = self.config.get("prompt")
        if not isinstance(text, str):
            raise ConfigurationError("text or prompt not specified in display step config")

        rendered = self.render(text, context)
        self.runtime.write(rendered + "\n")
        return rendered


class ConditionStep(BaseStepExecutor):
    """Render ``config.condition`` and evaluate it to a bool."""

    async def execute(self, context: ExecutionContext) -> Any:
        condition = self.require_string(
            "condition", "condition parameter is required for condition step"
        )
        rendered = self.render(condition, context)
        result = evaluate_simple_condition(rendered)
        logger.debug(f"Condition '{condition}' rendered as '{rendered}' -> {result}")
        return result
