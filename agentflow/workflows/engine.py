"""
Workflow Engine

Execute workflows level by level with skip conditions, transforms, retries
and per-step error policy.
"""

import asyncio
import functools
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, TextIO

from config import EngineSettings, settings_manager
from ..interfaces import LLMClient
from ..runtime_data import ExecutionContext, ExecutionMetrics, StepResult
from ..tools import ToolRegistry, create_default_registry as create_default_tool_registry
from ..validation import OutputValidator
from .conditions import evaluate_step_conditions
from .definition import StepDefinition, WorkflowDefinition, WorkflowSettings
from .errors import (
    ConfigurationError,
    OutputValidationError,
    ScriptSecurityError,
    StepExecutionError,
    TransformError,
    WorkflowError,
    WorkflowExecutionError,
)
from .expressions import ExpressionResolver
from .graph import build_dependency_graph
from .steps import StepRuntime, create_executor
from .transforms import TransformPipeline, TransformRegistry
from .transforms import create_default_registry as create_default_transform_registry

logger = logging.getLogger(__name__)

SKIPPED_OUTPUT = "skipped - conditions not met"

# Errors that end a step immediately instead of being retried
FATAL_STEP_ERRORS = (ConfigurationError, ScriptSecurityError)


class WorkflowStatus(str, Enum):
    """Workflow execution status."""

    COMPLETED = "completed"
    PARTIAL = "partial"  # Some steps failed under continue-on-error


@dataclass
class WorkflowExecutionResult:
    """Result of workflow execution."""

    workflow_name: str
    execution_id: str
    status: WorkflowStatus
    outputs: Dict[str, Any] = field(default_factory=dict)
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    levels: List[List[str]] = field(default_factory=list)
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "workflow_name": self.workflow_name,
            "execution_id": self.execution_id,
            "status": self.status.value,
            "outputs": self.outputs,
            "step_results": {
                name: result.to_dict() for name, result in self.step_results.items()
            },
            "levels": [list(level) for level in self.levels],
            "metrics": self.metrics.to_dict(),
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


def compute_backoff(attempt: int, cap: float = 30.0, jitter: float = 1.0) -> float:
    """
    Delay in seconds before retry ``attempt`` (2 for the first retry).

    Grows as ``(attempt - 1) * 2 ** (attempt - 2)``, capped at ``cap``,
    plus up to ``jitter`` seconds of random delay.
    """
    if attempt <= 1:
        return 0.0
    backoff = min(cap, float((attempt - 1) * 2 ** (attempt - 2)))
    return backoff + (random.uniform(0, jitter) if jitter > 0 else 0.0)


class WorkflowEngine:
    """
    Workflow execution engine.

    Steps are grouped into dependency levels. Levels run one after another;
    the steps of a level run concurrently as asyncio tasks. Every step goes
    through the same state machine: skip conditions, pre-transforms,
    attempts with backoff, post-transforms, publication of the result.
    """

    def __init__(
        self,
        tool_registry: Optional[ToolRegistry] = None,
        llm_client: Optional[LLMClient] = None,
        output_validator: Optional[OutputValidator] = None,
        resolver: Optional[ExpressionResolver] = None,
        transform_registry: Optional[TransformRegistry] = None,
        output_stream: Optional[TextIO] = None,
        settings: Optional[EngineSettings] = None,
    ):
        """
        Initialize workflow engine.

        Args:
            tool_registry: Tools for ``tool`` steps (built-in tools by default)
            llm_client: Client for LLM steps
            output_validator: Validator applied to the workflow outputs; when
                omitted the workflow's own ``validation`` block is used
            resolver: Template resolver
            transform_registry: Transformers for context/post transforms
            output_stream: Where display steps write (stdout by default)
            settings: Engine settings (from the settings manager by default)
        """
        self.tool_registry = tool_registry or create_default_tool_registry()
        self.llm_client = llm_client
        self.output_validator = output_validator
        self.resolver = resolver or ExpressionResolver()
        self.transform_registry = transform_registry or create_default_transform_registry()
        self.transforms = TransformPipeline(self.transform_registry, self.resolver)
        self.output_stream = output_stream
        self.settings = settings or settings_manager.get_engine_settings()

    def runtime(self, workflow_settings: Optional[WorkflowSettings] = None) -> StepRuntime:
        """Collaborators handed to step executors for one workflow run."""
        return StepRuntime(
            resolver=self.resolver,
            tool_registry=self.tool_registry,
            settings=self.settings,
            execute_step=functools.partial(
                self.execute_step, workflow_settings=workflow_settings
            ),
            llm_client=self.llm_client,
            output_stream=self.output_stream,
        )

    async def execute(
        self,
        workflow: WorkflowDefinition,
        context: Optional[ExecutionContext] = None,
        inputs: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        """
        Execute a workflow.

        Args:
            workflow: Workflow definition
            context: Existing context to run in
            inputs: Values added to the data bag before the run

        Returns:
            WorkflowExecutionResult with execution outcome

        Raises:
            ConfigurationError: If the workflow definition is invalid
            CircularDependencyError: If step dependencies form a cycle
            WorkflowExecutionError: If a step failed and may not be skipped over
            OutputValidationError: If output validation fails with ``on_failure: stop``
        """
        errors = workflow.validate()
        if errors:
            raise ConfigurationError(f"invalid workflow '{workflow.name}': {errors}")

        levels = build_dependency_graph(workflow.steps)

        if context is None:
            context = ExecutionContext(data=inputs)
        else:
            for key, value in (inputs or {}).items():
                context.set_data(key, value)

        execution_id = str(uuid.uuid4())
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        settings = workflow.settings
        run_parallel = settings.parallel_execution and self.settings.parallel_execution

        logger.info(
            f"Starting workflow '{workflow.name}' ({execution_id}): "
            f"{len(workflow.steps)} steps in {len(levels)} levels"
        )
        for index, level in enumerate(levels):
            logger.debug(f"Dependency level {index}: {[step.name for step in level]}")

        step_results: Dict[str, StepResult] = {}
        try:
            for index, level in enumerate(levels):
                logger.debug(f"Executing dependency level {index} ({len(level)} steps)")
                if run_parallel and len(level) > 1:
                    await self._execute_level_concurrently(level, context, settings, step_results)
                else:
                    await self._execute_level_serially(level, context, settings, step_results)
        finally:
            elapsed = time.monotonic() - start
            self._update_metrics(workflow, context, step_results, elapsed)
            logger.info(f"Workflow '{workflow.name}' finished in {elapsed:.2f}s")

        outputs = {name: result.output for name, result in step_results.items() if result.success}
        failed = [name for name, result in step_results.items() if not result.success]

        result = WorkflowExecutionResult(
            workflow_name=workflow.name,
            execution_id=execution_id,
            status=WorkflowStatus.PARTIAL if failed else WorkflowStatus.COMPLETED,
            outputs=outputs,
            step_results=step_results,
            levels=[[step.name for step in level] for level in levels],
            metrics=context.metrics_snapshot(),
            error=f"steps failed: {failed}" if failed else None,
            started_at=started_at,
        )

        self._validate_outputs(workflow, result)
        result.completed_at = datetime.now(timezone.utc)
        return result

    async def _execute_level_serially(
        self,
        level: List[StepDefinition],
        context: ExecutionContext,
        settings: WorkflowSettings,
        step_results: Dict[str, StepResult],
    ):
        for step in level:
            try:
                await self.execute_step(step, context, workflow_settings=settings)
            except WorkflowError as e:
                self._handle_step_failure(step, e, settings)
            finally:
                self._collect(step, context, step_results)

    async def _execute_level_concurrently(
        self,
        level: List[StepDefinition],
        context: ExecutionContext,
        settings: WorkflowSettings,
        step_results: Dict[str, StepResult],
    ):
        outcomes = await asyncio.gather(
            *(self.execute_step(step, context, workflow_settings=settings) for step in level),
            return_exceptions=True,
        )

        for step in level:
            self._collect(step, context, step_results)

        for step, outcome in zip(level, outcomes):
            if isinstance(outcome, WorkflowError):
                self._handle_step_failure(step, outcome, settings)
            elif isinstance(outcome, BaseException):
                raise outcome

    @staticmethod
    def _collect(step: StepDefinition, context: ExecutionContext, step_results: Dict[str, StepResult]):
        result = context.get_step_result(step.name)
        if result is not None:
            step_results[step.name] = result

    @staticmethod
    def _handle_step_failure(step: StepDefinition, error: WorkflowError, settings: WorkflowSettings):
        if step.continue_on_error or not settings.stop_on_failure:
            logger.warning(f"Step '{step.name}' failed but continuing: {error}")
            return
        raise WorkflowExecutionError(step.name, error) from error

    def _update_metrics(
        self,
        workflow: WorkflowDefinition,
        context: ExecutionContext,
        step_results: Dict[str, StepResult],
        elapsed: float,
    ):
        results = list(step_results.values())
        context.update_metrics(
            total_steps=len(workflow.steps),
            successful_steps=sum(1 for r in results if r.success and not r.skipped),
            failed_steps=sum(1 for r in results if not r.success),
            skipped_steps=sum(1 for r in results if r.skipped),
            total_execution_time=elapsed,
        )

    def _validate_outputs(self, workflow: WorkflowDefinition, result: WorkflowExecutionResult):
        validator = self.output_validator or OutputValidator.from_dict(workflow.validation)
        if validator is None:
            return

        try:
            validator.validate(result.outputs)
        except OutputValidationError as e:
            if validator.stop_on_failure:
                raise
            logger.warning(f"Output validation failed for workflow '{workflow.name}': {e}")
            result.error = f"{result.error}; {e}" if result.error else str(e)

    async def execute_step(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        workflow_settings: Optional[WorkflowSettings] = None,
    ) -> StepResult:
        """
        Run one step through the full state machine and publish its result.

        Args:
            step: Step definition
            context: Execution context
            workflow_settings: Workflow-wide retry and timeout defaults

        Returns:
            The published StepResult

        Raises:
            ConfigurationError: If the step is misconfigured (never retried)
            ScriptSecurityError: If a script is rejected (never retried)
            TransformError: If a pre-transform fails (never retried)
            StepExecutionError: If every attempt failed
        """
        workflow_settings = workflow_settings or WorkflowSettings()

        if step.conditions:
            try:
                conditions_met = evaluate_step_conditions(
                    step.conditions, context.step_results_snapshot(), context
                )
            except ConfigurationError as e:
                self._publish_failure(step, context, e, 0.0)
                raise
            if not conditions_met:
                logger.info(f"Step '{step.name}' conditions not met, skipping")
                result = StepResult(
                    step_name=step.name,
                    success=True,
                    output=SKIPPED_OUTPUT,
                    metadata={"skipped": True},
                )
                context.set_step_result(step.name, result)
                return result

        logger.info(f"Executing step '{step.name}' ({step.type})")
        start = time.monotonic()

        try:
            self.transforms.execute_pre_transforms(step, context)
        except TransformError as e:
            self._publish_failure(step, context, e, time.monotonic() - start)
            raise

        runtime = self.runtime(workflow_settings)
        max_attempts = self.max_attempts(step, workflow_settings)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = compute_backoff(
                    attempt,
                    self.settings.retry_backoff_cap_seconds,
                    self.settings.retry_jitter_max_seconds,
                )
                logger.info(
                    f"Retrying step '{step.name}' (attempt {attempt}/{max_attempts}) in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

            try:
                executor = create_executor(step, runtime)
                output = await self._run_attempt(executor, context, workflow_settings.step_timeout)
            except FATAL_STEP_ERRORS as e:
                logger.error(f"Step '{step.name}' failed permanently: {e}")
                self._publish_failure(step, context, e, time.monotonic() - start)
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Step '{step.name}' attempt {attempt} failed: {e}")
                continue

            result = StepResult(
                step_name=step.name,
                success=True,
                output=output,
                metadata={"attempts": attempt, **executor.result_metadata(output)},
            )
            try:
                self.transforms.execute_post_transforms(step, result, context)
            except TransformError as e:
                logger.warning(f"Post-transform failed for step '{step.name}': {e}")

            result.execution_time = time.monotonic() - start
            context.set_step_result(step.name, result)
            logger.info(f"Step '{step.name}' completed in {result.execution_time:.2f}s")
            return result

        self._publish_failure(step, context, last_error, time.monotonic() - start)
        if isinstance(last_error, StepExecutionError):
            raise last_error
        raise StepExecutionError(str(last_error), step_name=step.name) from last_error

    async def _run_attempt(
        self, executor, context: ExecutionContext, timeout: Optional[float]
    ) -> Any:
        if timeout is None or timeout <= 0:
            return await executor.execute(context)
        try:
            return await asyncio.wait_for(executor.execute(context), timeout=timeout)
        except asyncio.TimeoutError:
            raise StepExecutionError(
                f"step timed out after {timeout}s", step_name=executor.step.name
            )

    def max_attempts(self, step: StepDefinition, workflow_settings: WorkflowSettings) -> int:
        if step.retry.max_attempts > 0:
            return step.retry.max_attempts
        if workflow_settings.max_retries > 0:
            return workflow_settings.max_retries
        return self.settings.default_max_attempts

    @staticmethod
    def _publish_failure(
        step: StepDefinition,
        context: ExecutionContext,
        error: Optional[BaseException],
        elapsed: float,
    ):
        context.set_step_result(
            step.name,
            StepResult(
                step_name=step.name,
                success=False,
                output=getattr(error, "partial_output", None),
                error=str(error) if error is not None else None,
                execution_time=elapsed,
            ),
        )
