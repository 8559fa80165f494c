"""Exceptions raised by the workflow engine."""

from typing import Any, List, Optional


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class ConfigurationError(WorkflowError):
    """A step is misconfigured. Never retried."""


class CircularDependencyError(WorkflowError):
    """The step dependency graph contains a cycle."""

    def __init__(self, remaining: List[str]):
        self.remaining = list(remaining)
        super().__init__(
            f"circular dependency detected among steps: {self.remaining}"
        )


class StepExecutionError(WorkflowError):
    """A single attempt of a step failed."""

    def __init__(
        self,
        message: str,
        step_name: Optional[str] = None,
        partial_output: Any = None,
    ):
        super().__init__(message)
        self.step_name = step_name
        self.partial_output = partial_output


class TransformError(WorkflowError):
    """A context or post transform failed."""


class ScriptSecurityError(WorkflowError):
    """A script was rejected by security validation."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__(f"script security validation failed: {self.violations}")


class ExpressionError(WorkflowError):
    """A template expression could not be resolved."""


class WorkflowExecutionError(WorkflowError):
    """A step failed and the workflow was not allowed to continue."""

    def __init__(self, step_name: str, cause: BaseException):
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"step {step_name} failed: {cause}")


class OutputValidationError(WorkflowError):
    """Workflow output did not satisfy the configured validation rules."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"validation failed: {self.errors}")
