"""
Workflow Steps

Step executor types:
- ToolStep: invoke a registered tool
- LLMStep / LLMDisplayStep / LLMWithToolsStep: LLM completions
- DisplayStep / ConditionStep: show text, evaluate a condition
- ScriptStep: run a validated shell script
- LoopStep / ParallelStep: steps that contain other steps
"""

from typing import Dict, Type

from ..definition import StepDefinition, StepType
from ..errors import ConfigurationError
from .base import BaseStepExecutor, StepRuntime, call_tool
from .tool_step import ToolStep
from .llm_step import LLMDisplayStep, LLMStep
from .llm_tools_step import LLMWithToolsConfig, LLMWithToolsStep, ToolExecution
from .display_step import ConditionStep, DisplayStep
from .script_step import ScriptStep, kill_process_tree
from .loop import LoopConfig, LoopResult, LoopStep, parse_loop_config
from .parallel import PARALLEL_STEP_TYPES, ParallelStep, parse_parallel_steps

STEP_EXECUTORS: Dict[StepType, Type[BaseStepExecutor]] = {
    StepType.TOOL: ToolStep,
    StepType.LLM: LLMStep,
    StepType.LLM_DISPLAY: LLMDisplayStep,
    StepType.LLM_WITH_TOOLS: LLMWithToolsStep,
    StepType.DISPLAY: DisplayStep,
    StepType.SCRIPT: ScriptStep,
    StepType.CONDITION: ConditionStep,
    StepType.LOOP: LoopStep,
    StepType.PARALLEL: ParallelStep,
}

_unhandled = set(StepType) - set(STEP_EXECUTORS)
if _unhandled:
    raise ImportError(f"no executor registered for step types: {sorted(t.value for t in _unhandled)}")


def create_executor(step: StepDefinition, runtime: StepRuntime) -> BaseStepExecutor:
    """
    Create the executor for a step.

    Raises:
        ConfigurationError: If the step type is unknown
    """
    step_type = step.step_type
    if step_type is None:
        raise ConfigurationError(f"unsupported step type: {step.type}")
    return STEP_EXECUTORS[step_type](step, runtime)


__all__ = [
    "BaseStepExecutor",
    "StepRuntime",
    "STEP_EXECUTORS",
    "create_executor",
    "call_tool",
    "ToolStep",
    "LLMStep",
    "LLMDisplayStep",
    "LLMWithToolsStep",
    "LLMWithToolsConfig",
    "ToolExecution",
    "DisplayStep",
    "ConditionStep",
    "ScriptStep",
    "kill_process_tree",
    "LoopStep",
    "LoopConfig",
    "LoopResult",
    "parse_loop_config",
    "ParallelStep",
    "PARALLEL_STEP_TYPES",
    "parse_parallel_steps",
]
