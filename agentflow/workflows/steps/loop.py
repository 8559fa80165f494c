"""
Loop Step

Repeat a sequence of steps until a break condition matches or the
iteration limit is reached.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import EngineSettings
from ...runtime_data import ExecutionContext, StepResult
from ..conditions import evaluate_break_conditions
from ..definition import StepCondition, StepDefinition
from ..errors import ConfigurationError, StepExecutionError, WorkflowError
from .base import BaseStepExecutor

logger = logging.getLogger(__name__)

MAX_ITERATIONS_REACHED = "max_iterations_reached"


@dataclass
class LoopConfig:
    """Decoded loop step configuration."""

    max_iterations: int
    steps: List[StepDefinition]
    break_on: List[StepCondition] = field(default_factory=list)
    output_var: str = ""


@dataclass
class LoopResult:
    """Output of a loop step."""

    iterations: int = 0
    final_result: Any = None
    break_reason: str = MAX_ITERATIONS_REACHED
    step_results: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "final_result": self.final_result,
            "break_reason": self.break_reason,
            "step_results": dict(self.step_results),
        }


def parse_loop_config(
    config: Dict[str, Any], settings: Optional[EngineSettings] = None
) -> LoopConfig:
    """
    Decode a loop step's config.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    settings = settings or EngineSettings()

    max_iterations = config.get("max_iterations", settings.loop_default_max_iterations)
    if isinstance(max_iterations, bool) or not isinstance(max_iterations, (int, float)):
        raise ConfigurationError("invalid loop configuration: max_iterations must be a number")
    max_iterations = int(max_iterations)
    if max_iterations <= 0:
        raise ConfigurationError("invalid loop configuration: max_iterations must be greater than 0")
    if max_iterations > settings.loop_max_iterations_limit:
        raise ConfigurationError(
            f"invalid loop configuration: max_iterations cannot exceed "
            f"{settings.loop_max_iterations_limit}"
        )

    break_on = []
    for condition in config.get("break_on") or []:
        if not isinstance(condition, dict):
            raise ConfigurationError("invalid loop configuration: break_on entries must be mappings")
        break_on.append(StepCondition.from_dict(condition))

    steps = []
    for index, step_data in enumerate(config.get("steps") or []):
        if not isinstance(step_data, dict):
            raise ConfigurationError(f"invalid loop configuration: invalid step at index {index}")
        steps.append(StepDefinition.from_dict(step_data))
    if not steps:
        raise ConfigurationError("invalid loop configuration: loop must have at least one step")

    output_var = config.get("output_var")
    return LoopConfig(
        max_iterations=max_iterations,
        steps=steps,
        break_on=break_on,
        output_var=output_var if isinstance(output_var, str) else "",
    )


class LoopStep(BaseStepExecutor):
    """
    Loop step that runs its child steps once per iteration.

    Each iteration sees the data keys ``loop_iteration`` (0-based),
    ``loop_iterations_completed`` and ``prev_<step>`` for every child
    output collected so far. Child results are also recorded as
    ``<step>_iter_<n>``.

    Example YAML:
        - name: refine
          type: loop
          config:
            max_iterations: 5
            output_var: review
            break_on:
              - field: review
                operator: contains
                value: LGTM
            steps:
              - name: review
                type: llm
                config:
                  prompt: "Review again: {prev_review}"
    """

    async def execute(self, context: ExecutionContext) -> Any:
        config = parse_loop_config(self.config, self.runtime.settings)
        logger.info(
            f"Starting loop '{self.step.name}' (max_iterations={config.max_iterations}, "
            f"break_conditions={len(config.break_on)})"
        )

        result = LoopResult()

        for iteration in range(config.max_iterations):
            result.iterations = iteration + 1
            logger.debug(f"Loop '{self.step.name}' iteration {result.iterations} starting")

            iteration_context = self.iteration_context(context, result, iteration)
            iteration_results = await self.run_iteration(
                config.steps, iteration_context, result, iteration
            )

            for name, step_result in iteration_results.items():
                context.set_step_result(f"{name}_iter_{iteration}", step_result)

            should_break, reason = evaluate_break_conditions(
                config.break_on, iteration_results, iteration_context
            )
            if should_break:
                result.break_reason = reason
                logger.info(
                    f"Loop '{self.step.name}' breaking on iteration {result.iterations}: {reason}"
                )
                break

        if config.output_var and result.step_results.get(config.output_var) is not None:
            result.final_result = result.step_results[config.output_var]
        else:
            result.final_result = dict(result.step_results)

        logger.info(
            f"Loop '{self.step.name}' completed after {result.iterations} iterations "
            f"({result.break_reason})"
        )
        return result

    async def run_iteration(
        self,
        steps: List[StepDefinition],
        iteration_context: ExecutionContext,
        result: LoopResult,
        iteration: int,
    ) -> Dict[str, StepResult]:
        iteration_results: Dict[str, StepResult] = {}

        for child in steps:
            try:
                step_result = await self.runtime.execute_step(child, iteration_context)
            except WorkflowError as e:
                if not child.continue_on_error:
                    raise StepExecutionError(
                        f"loop step {child.name} failed on iteration {iteration + 1}: {e}",
                        step_name=self.step.name,
                        partial_output=result,
                    ) from e
                logger.warning(
                    f"Loop step '{child.name}' failed on iteration {iteration + 1}, continuing: {e}"
                )
                step_result = iteration_context.get_step_result(child.name)
                if step_result is None:
                    continue

            iteration_results[child.name] = step_result
            if step_result.success:
                result.step_results[child.name] = step_result.output

        return iteration_results

    @staticmethod
    def iteration_context(
        context: ExecutionContext, result: LoopResult, iteration: int
    ) -> ExecutionContext:
        extra: Dict[str, Any] = {
            "loop_iteration": iteration,
            "loop_iterations_completed": result.iterations,
        }
        for name, output in result.step_results.items():
            extra[f"prev_{name}"] = output
        return context.derive(extra)

    def result_metadata(self, output: Any) -> Dict[str, Any]:
        if isinstance(output, LoopResult):
            return {"iterations": output.iterations, "break_reason": output.break_reason}
        return {}
