"""
Parallel Step

Run a fixed set of simple steps concurrently and collect their outputs.
"""

import asyncio
import logging
from typing import Any, Dict, List, Tuple

from ...runtime_data import ExecutionContext
from ..definition import StepDefinition, StepType
from ..errors import ConfigurationError, StepExecutionError
from .base import BaseStepExecutor

logger = logging.getLogger(__name__)

PARALLEL_STEP_TYPES = frozenset(
    {StepType.TOOL, StepType.LLM, StepType.LLM_DISPLAY, StepType.DISPLAY, StepType.CONDITION}
)


def parse_parallel_steps(config: Dict[str, Any]) -> List[StepDefinition]:
    """
    Decode ``config.steps`` of a parallel step.

    Steps without a name are called ``parallel_<index>``.

    Raises:
        ConfigurationError: If the step list is missing or malformed
    """
    steps_config = config.get("steps")
    if not isinstance(steps_config, list):
        raise ConfigurationError("steps parameter is required for parallel step")

    steps = []
    for index, step_data in enumerate(steps_config):
        if not isinstance(step_data, dict):
            raise ConfigurationError(f"invalid step configuration at index {index}")
        step_data = dict(step_data)
        if not isinstance(step_data.get("name"), str) or not step_data["name"]:
            step_data["name"] = f"parallel_{index}"
        steps.append(StepDefinition.from_dict(step_data))
    return steps


class ParallelStep(BaseStepExecutor):
    """
    Fan out ``config.steps`` as asyncio tasks and wait for all of them.

    Children run once each (no conditions, transforms or retries) and only
    tool, llm, llm_display, display and condition steps are supported.
    Output is ``{"results": {name: output}, "completed": n, "total": m}``
    plus ``"errors"`` when any child failed, in which case the step fails
    with that output attached.
    """

    async def execute(self, context: ExecutionContext) -> Any:
        steps = parse_parallel_steps(self.config)
        logger.info(f"Starting parallel step '{self.step.name}' with {len(steps)} branches")

        tasks = [asyncio.create_task(self.run_branch(child, context)) for child in steps]
        try:
            outcomes = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            logger.warning(f"Parallel step '{self.step.name}': parallel execution cancelled")
            raise

        results: Dict[str, Any] = {}
        errors: List[str] = []
        for name, output, error in outcomes:
            if error is not None:
                errors.append(f"Step '{name}': {error}")
            else:
                results[name] = output

        response: Dict[str, Any] = {
            "results": results,
            "completed": len(results),
            "total": len(steps),
        }
        if errors:
            response["errors"] = errors
            raise StepExecutionError(
                f"some parallel steps failed: {errors}",
                step_name=self.step.name,
                partial_output=response,
            )
        return response

    async def run_branch(
        self, child: StepDefinition, context: ExecutionContext
    ) -> Tuple[str, Any, Any]:
        """Run one child; any exception becomes that child's error."""
        try:
            step_type = child.step_type
            if step_type not in PARALLEL_STEP_TYPES:
                raise ConfigurationError(
                    f"unsupported step type for parallel execution: {child.type}"
                )
            from . import create_executor

            executor = create_executor(child, self.runtime)
            return child.name, await executor.execute(context), None
        except Exception as e:
            logger.warning(f"Parallel branch '{child.name}' failed: {e}")
            return child.name, None, e
