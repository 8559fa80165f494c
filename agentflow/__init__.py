"""
agentflow

Multi-step workflow execution engine: steps are grouped into dependency
levels, rendered with ``{expression}`` templates, retried with backoff and
run as tools, LLM calls, displays, conditions, scripts, loops or parallel
fan-outs.
"""

from .interfaces import LLMClient, LLMResponse, ToolInterface
from .runtime_data import ExecutionContext, ExecutionMetrics, StepResult
from .workflows import (
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowExecutionResult,
    WorkflowStatus,
)

__all__ = [
    "LLMClient",
    "LLMResponse",
    "ToolInterface",
    "ExecutionContext",
    "ExecutionMetrics",
    "StepResult",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowExecutionResult",
    "WorkflowStatus",
]
