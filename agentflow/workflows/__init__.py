"""
Workflow System

Definitions, dependency levels, template resolution, transforms and the
execution engine.
"""

from .definition import (
    StepCondition,
    StepDefinition,
    StepType,
    RetryConfig,
    TransformDefinition,
    WorkflowDefinition,
    WorkflowSettings,
)
from .errors import (
    CircularDependencyError,
    ConfigurationError,
    ExpressionError,
    OutputValidationError,
    ScriptSecurityError,
    StepExecutionError,
    TransformError,
    WorkflowError,
    WorkflowExecutionError,
)
from .expressions import BUILTIN_FUNCTIONS, ExpressionResolver
from .graph import build_dependency_graph
from .engine import (
    WorkflowEngine,
    WorkflowExecutionResult,
    WorkflowStatus,
    compute_backoff,
)

__all__ = [
    "StepCondition",
    "StepDefinition",
    "StepType",
    "RetryConfig",
    "TransformDefinition",
    "WorkflowDefinition",
    "WorkflowSettings",
    "CircularDependencyError",
    "ConfigurationError",
    "ExpressionError",
    "OutputValidationError",
    "ScriptSecurityError",
    "StepExecutionError",
    "TransformError",
    "WorkflowError",
    "WorkflowExecutionError",
    "BUILTIN_FUNCTIONS",
    "ExpressionResolver",
    "build_dependency_graph",
    "WorkflowEngine",
    "WorkflowExecutionResult",
    "WorkflowStatus",
    "compute_backoff",
]
