"""Tests for the workflow engine."""

import asyncio
from typing import Any, Dict
from unittest.mock import AsyncMock, call, patch

import pytest

from agentflow.interfaces import ToolInterface
from agentflow.runtime_data import ExecutionContext
from agentflow.validation import OutputValidator, ValidationConfig, ValidationRule
from agentflow.workflows import (
    CircularDependencyError,
    ConfigurationError,
    OutputValidationError,
    StepDefinition,
    StepExecutionError,
    TransformError,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowExecutionError,
    WorkflowSettings,
    WorkflowStatus,
    compute_backoff,
)
from agentflow.workflows.engine import SKIPPED_OUTPUT
from agentflow.workflows.transforms import BaseTransformer

from .fakes import FlakyTool, RecordingTool, RendezvousTool


class SlowTool(ToolInterface):
    """Async tool that sleeps before answering."""

    def __init__(self, delay: float):
        self.delay = delay

    @property
    def name(self) -> str:
        return "slow"

    @property
    def description(self) -> str:
        return "Sleeps"

    async def execute_tool(self, arguments: Dict[str, Any]) -> Any:
        await asyncio.sleep(self.delay)
        return "done"


def workflow(yaml_str: str) -> WorkflowDefinition:
    return WorkflowDefinition.from_yaml(yaml_str)


class TestComputeBackoff:
    def test_growth_and_cap(self):
        assert compute_backoff(1, jitter=0) == 0.0
        assert compute_backoff(2, jitter=0) == 1.0
        assert compute_backoff(3, jitter=0) == 4.0
        assert compute_backoff(4, jitter=0) == 12.0
        assert compute_backoff(10, jitter=0) == 30.0
        assert compute_backoff(5, cap=10.0, jitter=0) == 10.0

    def test_jitter_is_bounded(self):
        for _ in range(20):
            assert 1.0 <= compute_backoff(2, jitter=0.5) <= 1.5


class TestWorkflowExecution:
    """Tests for WorkflowEngine.execute."""

    @pytest.mark.asyncio
    async def test_dependency_levels_run_in_order(self, engine, output):
        wf = workflow(
            """
workflow:
  name: chain
  steps:
    - name: c
      type: display
      depends_on: [b]
      config:
        text: "{b} then c"
    - name: a
      type: display
      config:
        text: "A"
    - name: b
      type: display
      depends_on: [a]
      config:
        text: "{a} then b"
"""
        )

        result = await engine.execute(wf)

        assert result.status == WorkflowStatus.COMPLETED
        assert result.levels == [["a"], ["b"], ["c"]]
        assert result.outputs == {"a": "A", "b": "A then b", "c": "A then b then c"}
        assert output.getvalue() == "A\nA then b\nA then b then c\n"
        assert result.metrics.total_steps == 3
        assert result.metrics.successful_steps == 3
        assert result.error is None
        assert result.completed_at >= result.started_at

    @pytest.mark.asyncio
    async def test_tool_params_are_rendered_and_merged_with_data(self, engine, tool_registry):
        wf = workflow(
            """
name: tools
steps:
  - name: greet
    type: tool
    config:
      tool: echo
      params:
        greeting: "hi {user}"
        retries: 2
"""
        )

        result = await engine.execute(wf, inputs={"user": "bob"})

        tool = tool_registry.get_tool("echo")
        assert tool.calls == [{"greeting": "hi bob", "retries": 2, "user": "bob"}]
        assert result.outputs["greet"] == {"echo": tool.calls[0]}

    @pytest.mark.asyncio
    async def test_existing_context_receives_inputs(self, engine):
        context = ExecutionContext(data={"a": "1"})
        wf = workflow("name: w\nsteps:\n  - name: d\n    type: display\n    config:\n      text: '{a}{b}'\n")

        result = await engine.execute(wf, context=context, inputs={"b": "2"})

        assert result.outputs["d"] == "12"
        assert context.get_step_result("d").output == "12"

    @pytest.mark.asyncio
    async def test_invalid_workflow_is_rejected(self, engine):
        wf = workflow("name: w\nsteps:\n  - name: d\n    type: nope\n")
        with pytest.raises(ConfigurationError, match="invalid workflow 'w'"):
            await engine.execute(wf)

    @pytest.mark.asyncio
    async def test_cycle_is_rejected(self, engine):
        wf = workflow(
            """
name: loop
steps:
  - name: a
    type: display
    depends_on: [b]
    config: {text: a}
  - name: b
    type: display
    depends_on: [a]
    config: {text: b}
"""
        )
        with pytest.raises(CircularDependencyError):
            await engine.execute(wf)

    @pytest.mark.asyncio
    async def test_llm_usage_is_recorded(self, engine, mock_llm):
        wf = workflow(
            """
name: llm
steps:
  - name: plain
    type: llm
    config:
      prompt: "Summarize {topic}"
  - name: guided
    type: llm
    config:
      prompt: "Again"
      system_prompt: "You are terse about {topic}"
"""
        )

        result = await engine.execute(wf, inputs={"topic": "logs"})

        mock_llm.complete.assert_awaited_once_with("Summarize logs")
        mock_llm.complete_with_system.assert_awaited_once_with("You are terse about logs", "Again")
        assert result.outputs == {"plain": "llm answer", "guided": "system answer"}
        assert result.metrics.llm_tokens_used == 30
        assert result.metrics.llm_cost == pytest.approx(1.5)

    @pytest.mark.asyncio
    async def test_result_to_dict(self, engine):
        wf = workflow("name: w\nsteps:\n  - name: d\n    type: display\n    config:\n      text: hi\n")
        data = (await engine.execute(wf)).to_dict()
        assert data["status"] == "completed"
        assert data["step_results"]["d"]["output"] == "hi"
        assert data["levels"] == [["d"]]


class TestRetries:
    """Tests for retry and backoff behaviour."""

    @pytest.mark.asyncio
    async def test_retry_until_success(self, engine, tool_registry):
        tool = tool_registry.register(FlakyTool(failures=2))
        step = StepDefinition.from_dict(
            {"name": "f", "type": "tool", "config": {"tool": "flaky"}, "retry": {"max_attempts": 3}}
        )

        with patch("agentflow.workflows.engine.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await engine.execute_step(step, ExecutionContext())

        assert result.success is True
        assert result.output == {"attempt": 3}
        assert result.metadata["attempts"] == 3
        assert tool.calls == 3
        assert sleep.await_args_list == [call(1.0), call(4.0)]

    @pytest.mark.asyncio
    async def test_exhausted_retries_publish_failure(self, engine, tool_registry):
        tool_registry.register(FlakyTool(failures=5))
        step = StepDefinition.from_dict(
            {"name": "f", "type": "tool", "config": {"tool": "flaky"}, "retry": {"max_attempts": 2}}
        )
        context = ExecutionContext()

        with patch("agentflow.workflows.engine.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(StepExecutionError, match="transient failure 2") as exc_info:
                await engine.execute_step(step, context)

        assert exc_info.value.step_name == "f"
        failed = context.get_step_result("f")
        assert failed.success is False
        assert failed.error == "transient failure 2"

    @pytest.mark.asyncio
    async def test_workflow_max_retries_is_the_fallback(self, engine, tool_registry):
        tool = tool_registry.register(FlakyTool(failures=1))
        wf = workflow(
            """
name: retrying
settings:
  max_retries: 2
steps:
  - name: f
    type: tool
    config:
      tool: flaky
"""
        )

        with patch("agentflow.workflows.engine.asyncio.sleep", new_callable=AsyncMock):
            result = await engine.execute(wf)

        assert result.status == WorkflowStatus.COMPLETED
        assert tool.calls == 2

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, engine, tool_registry):
        tool = tool_registry.register(FlakyTool(failures=5))
        step = StepDefinition.from_dict(
            {"name": "f", "type": "tool", "config": {"tool": "flaky"}, "retry": {"max_attempts": 3}}
        )
        context = ExecutionContext()

        task = asyncio.create_task(engine.execute_step(step, context))
        while tool.calls == 0:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert tool.calls == 1
        assert context.get_step_result("f") is None

    @pytest.mark.asyncio
    async def test_configuration_errors_are_not_retried(self, engine):
        step = StepDefinition.from_dict(
            {"name": "t", "type": "tool", "config": {"tool": "missing"}, "retry": {"max_attempts": 3}}
        )
        with patch("agentflow.workflows.engine.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ConfigurationError, match="tool missing not found"):
                await engine.execute_step(step, ExecutionContext())
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_step_timeout(self, engine, tool_registry):
        tool_registry.register(SlowTool(delay=2.0))
        wf = workflow(
            """
name: slow
settings:
  step_timeout: 0.1
steps:
  - name: s
    type: tool
    continue_on_error: true
    config:
      tool: slow
"""
        )

        result = await engine.execute(wf)

        assert result.status == WorkflowStatus.PARTIAL
        assert result.step_results["s"].error == "step timed out after 0.1s"


class TestErrorPolicy:
    """Tests for skip conditions, continue_on_error and stop_on_failure."""

    FAILING_WORKFLOW = """
name: failing
settings:
  stop_on_failure: {stop}
steps:
  - name: bad
    type: tool
    continue_on_error: {keep_going}
    config:
      tool: broken
  - name: after
    type: display
    depends_on: [bad]
    config:
      text: "after {{bad}}"
"""

    @pytest.fixture(autouse=True)
    def broken_tool(self, tool_registry):
        tool_registry.register(RecordingTool(name="broken", error=RuntimeError("kaput")))

    @pytest.mark.asyncio
    async def test_failure_stops_workflow(self, engine):
        wf = workflow(self.FAILING_WORKFLOW.format(stop="true", keep_going="false"))

        with pytest.raises(WorkflowExecutionError) as exc_info:
            await engine.execute(wf)

        assert exc_info.value.step_name == "bad"
        assert isinstance(exc_info.value.cause, StepExecutionError)
        assert str(exc_info.value) == "step bad failed: kaput"

    @pytest.mark.asyncio
    async def test_continue_on_error(self, engine):
        wf = workflow(self.FAILING_WORKFLOW.format(stop="true", keep_going="true"))

        result = await engine.execute(wf)

        assert result.status == WorkflowStatus.PARTIAL
        assert result.error == "steps failed: ['bad']"
        assert result.outputs == {"after": "after {bad}"}
        assert result.metrics.failed_steps == 1
        assert result.metrics.successful_steps == 1

    @pytest.mark.asyncio
    async def test_stop_on_failure_disabled(self, engine):
        wf = workflow(self.FAILING_WORKFLOW.format(stop="false", keep_going="false"))

        result = await engine.execute(wf)

        assert result.status == WorkflowStatus.PARTIAL
        assert "after" in result.outputs

    @pytest.mark.asyncio
    async def test_skip_conditions(self, engine, output):
        wf = workflow(
            """
name: conditional
steps:
  - name: mode
    type: display
    config:
      text: "{mode}"
  - name: deploy
    type: display
    depends_on: [mode]
    conditions:
      - field: mode
        operator: equals
        value: release
    config:
      text: deploying
  - name: report
    type: display
    depends_on: [deploy]
    conditions:
      - field: verbose
        operator: not_empty
    config:
      text: "report {deploy}"
"""
        )

        result = await engine.execute(wf, inputs={"mode": "debug", "verbose": "yes"})

        assert result.step_results["deploy"].skipped is True
        assert result.outputs["deploy"] == SKIPPED_OUTPUT
        assert result.outputs["report"] == f"report {SKIPPED_OUTPUT}"
        assert result.metrics.skipped_steps == 1
        assert result.metrics.successful_steps == 2
        assert "deploying" not in output.getvalue()

    @pytest.mark.asyncio
    async def test_pre_transform_failure_is_not_retried(self, engine):
        step = StepDefinition.from_dict(
            {
                "name": "t",
                "type": "display",
                "config": {"text": "x"},
                "retry": {"max_attempts": 3},
                "context_transforms": [{"source": "ghost", "transform": "parse_json"}],
            }
        )
        context = ExecutionContext()

        with pytest.raises(TransformError, match="pre-transform 0 failed"):
            await engine.execute_step(step, context)
        assert context.get_step_result("t").success is False

    @pytest.mark.asyncio
    async def test_post_transform_failure_keeps_success(self, engine):
        step = StepDefinition.from_dict(
            {
                "name": "t",
                "type": "display",
                "config": {"text": "not json"},
                "post_transforms": [{"source": "t", "transform": "parse_json", "store_as": "parsed"}],
            }
        )
        context = ExecutionContext()

        result = await engine.execute_step(step, context)

        assert result.success is True
        assert not context.has_data("parsed")

    @pytest.mark.asyncio
    async def test_post_transform_with_bad_delimiter_keeps_success(self, engine):
        wf = workflow(
            """
name: split
steps:
  - name: words
    type: display
    config:
      text: "a b c"
    post_transforms:
      - source: words
        transform: string_process
        params:
          operation: split
          delimiter: 5
        store_as: parts
  - name: after
    type: display
    depends_on: [words]
    config:
      text: "after {words}"
"""
        )

        context = ExecutionContext()

        result = await engine.execute(wf, context=context)

        assert result.status == WorkflowStatus.COMPLETED
        assert result.step_results["words"].success is True
        assert result.outputs["after"] == "after a b c"
        assert not context.has_data("parts")

    @pytest.mark.asyncio
    async def test_unexpected_transformer_error_is_a_transform_error(self, engine):
        class Exploding(BaseTransformer):
            name = "explode"

            def transform(self, input_data, params):
                raise KeyError("missing")

        engine.transform_registry.register(Exploding())
        post = StepDefinition.from_dict(
            {
                "name": "p",
                "type": "display",
                "config": {"text": "x"},
                "post_transforms": [{"source": "p", "transform": "explode"}],
            }
        )
        pre = StepDefinition.from_dict(
            {
                "name": "q",
                "type": "display",
                "config": {"text": "x"},
                "context_transforms": [{"source": "p", "transform": "explode"}],
            }
        )
        context = ExecutionContext()

        assert (await engine.execute_step(post, context)).success is True
        with pytest.raises(TransformError, match="transformation 'explode' failed: KeyError"):
            await engine.execute_step(pre, context)
        assert context.get_step_result("q").success is False

    @pytest.mark.asyncio
    async def test_transforms_feed_the_step(self, engine):
        wf = workflow(
            """
name: transforms
steps:
  - name: log
    type: display
    config:
      text: "ERROR a\\nINFO b\\nERROR c"
    post_transforms:
      - source: log
        transform: extract_lines
        params:
          pattern: ERROR
          mode: count
        store_as: error_count
  - name: summary
    type: display
    depends_on: [log]
    context_transforms:
      - source: log
        transform: string_process
        params:
          operation: upper
        store_as: loud
    config:
      text: "{error_count} errors / {loud}"
"""
        )

        result = await engine.execute(wf)

        assert result.outputs["summary"] == "2 errors / ERROR A\nINFO B\nERROR C"


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_level_steps_run_concurrently(self, engine, tool_registry):
        first, second = asyncio.Event(), asyncio.Event()
        tool_registry.register(RendezvousTool("left", first, second))
        tool_registry.register(RendezvousTool("right", second, first))
        wf = workflow(
            """
name: fan
steps:
  - name: l
    type: tool
    config: {tool: left}
  - name: r
    type: tool
    config: {tool: right}
"""
        )

        result = await engine.execute(wf)

        assert result.levels == [["l", "r"]]
        assert result.outputs == {"l": "left", "r": "right"}

    @pytest.mark.asyncio
    async def test_parallel_execution_can_be_disabled(self, engine, tool_registry):
        first, second = asyncio.Event(), asyncio.Event()
        tool_registry.register(RendezvousTool("left", first, second))
        tool_registry.register(RendezvousTool("right", second, first))
        wf = workflow(
            """
name: serial
settings:
  parallel_execution: false
  stop_on_failure: false
steps:
  - name: l
    type: tool
    config: {tool: left}
  - name: r
    type: tool
    config: {tool: right}
"""
        )

        result = await engine.execute(wf)

        # left times out waiting for right, which then finds left already started
        assert result.step_results["l"].success is False
        assert result.outputs == {"r": "right"}

    @pytest.mark.asyncio
    async def test_concurrent_failure_stops_after_level(self, engine, tool_registry):
        tool_registry.register(RecordingTool(name="broken", error=RuntimeError("kaput")))
        wf = workflow(
            """
name: fan
steps:
  - name: bad
    type: tool
    config: {tool: broken}
  - name: good
    type: display
    config: {text: fine}
  - name: later
    type: display
    depends_on: [good]
    config: {text: never}
"""
        )
        context = ExecutionContext()

        with pytest.raises(WorkflowExecutionError):
            await engine.execute(wf, context=context)

        assert context.get_step_result("good").success is True
        assert context.get_step_result("later") is None
        assert context.metrics.failed_steps == 1


class TestOutputValidation:
    VALIDATED_WORKFLOW = """
name: validated
validation:
  on_failure: {mode}
  rules:
    - name: has_report
      type: schema
      config:
        schema:
          type: object
          required: [report]
steps:
  - name: summary
    type: display
    config:
      text: done
"""

    @pytest.mark.asyncio
    async def test_stop_raises(self, engine):
        wf = workflow(self.VALIDATED_WORKFLOW.format(mode="stop"))
        with pytest.raises(OutputValidationError, match="required field 'report' is missing"):
            await engine.execute(wf)

    @pytest.mark.asyncio
    async def test_bad_validation_block_fails_before_steps_run(self, engine, output):
        wf = workflow(self.VALIDATED_WORKFLOW.format(mode="fail"))

        with pytest.raises(ConfigurationError, match="Invalid validation block: on_failure"):
            await engine.execute(wf)

        assert output.getvalue() == ""

    @pytest.mark.asyncio
    async def test_warn_records_error(self, engine):
        wf = workflow(self.VALIDATED_WORKFLOW.format(mode="warn"))

        result = await engine.execute(wf)

        assert result.status == WorkflowStatus.COMPLETED
        assert "Rule 'has_report'" in result.error

    @pytest.mark.asyncio
    async def test_engine_validator_takes_precedence(self, tool_registry, output, settings):
        validator = OutputValidator(
            ValidationConfig(
                rules=[ValidationRule(name="any", type="regex", config={"pattern": "done"})],
                on_failure="stop",
            )
        )
        engine = WorkflowEngine(
            tool_registry=tool_registry,
            output_validator=validator,
            output_stream=output,
            settings=settings,
        )
        wf = workflow(self.VALIDATED_WORKFLOW.format(mode="stop"))

        result = await engine.execute(wf)

        assert result.error is None


class TestEngineSetup:
    def test_defaults(self, settings):
        engine = WorkflowEngine(settings=settings)
        assert "ask_user" in engine.tool_registry
        assert "aggregate" in engine.transform_registry
        assert engine.max_attempts(StepDefinition(name="s", type="llm"), WorkflowSettings()) == 1
