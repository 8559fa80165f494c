"""
Runtime Data Module

Manages runtime data for workflow execution:
- State: ExecutionContext, StepResult, ExecutionMetrics
"""

from .state import ExecutionContext, ExecutionMetrics, StepResult

__all__ = [
    "ExecutionContext",
    "ExecutionMetrics",
    "StepResult",
]
