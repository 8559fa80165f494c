"""Tests for workflow definition parsing and validation."""

import json

import pytest

from agentflow.workflows import StepType, WorkflowDefinition


WORKFLOW_YAML = """
workflow:
  name: review
  description: Review a change
  settings:
    max_retries: 2
    step_timeout: 5
    parallel_execution: false
  steps:
    - name: fetch
      type: tool
      config:
        tool: echo
        params:
          path: "{repo}"
      retry:
        max_attempts: 3
    - name: summarize
      type: llm
      depends_on: fetch
      continue_on_error: true
      conditions:
        - field: fetch
          operator: not_empty
      context_transforms:
        - name: lines
          source: fetch
          transform: extract_lines
          params:
            pattern: "ERROR"
          store_as: errors
      config:
        prompt: "Summarize {errors}"
"""


class TestWorkflowDefinition:
    """Tests for WorkflowDefinition."""

    def test_from_yaml(self):
        workflow = WorkflowDefinition.from_yaml(WORKFLOW_YAML)

        assert workflow.name == "review"
        assert workflow.settings.max_retries == 2
        assert workflow.settings.step_timeout == 5.0
        assert workflow.settings.parallel_execution is False
        assert workflow.settings.stop_on_failure is True

        fetch, summarize = workflow.steps
        assert fetch.step_type is StepType.TOOL
        assert fetch.retry.max_attempts == 3
        assert summarize.depends_on == ["fetch"]
        assert summarize.continue_on_error is True
        assert summarize.conditions[0].operator == "not_empty"
        assert summarize.context_transforms[0].store_as == "errors"
        assert workflow.validate() == []

    def test_from_yaml_without_workflow_key(self):
        workflow = WorkflowDefinition.from_yaml(
            "name: plain\nsteps:\n  - name: hello\n    type: display\n    config:\n      text: hi\n"
        )
        assert workflow.name == "plain"
        assert workflow.get_step("hello").config == {"text": "hi"}

    def test_from_json_round_trip(self):
        workflow = WorkflowDefinition.from_yaml(WORKFLOW_YAML)
        again = WorkflowDefinition.from_json(json.dumps(workflow.to_dict()))
        assert again.to_dict() == workflow.to_dict()

    def test_invalid_documents(self):
        with pytest.raises(ValueError, match="Invalid YAML"):
            WorkflowDefinition.from_yaml("steps: [unclosed")
        with pytest.raises(ValueError, match="Invalid JSON"):
            WorkflowDefinition.from_json("{not json")
        with pytest.raises(ValueError, match="must contain 'steps'"):
            WorkflowDefinition.from_yaml("name: nothing")
        with pytest.raises(ValueError, match="must be a mapping"):
            WorkflowDefinition.from_yaml("- a\n- b\n")

    def test_from_file(self, tmp_path):
        path = tmp_path / "flow.yaml"
        path.write_text(WORKFLOW_YAML)
        assert WorkflowDefinition.from_file(str(path)).name == "review"

        with pytest.raises(FileNotFoundError):
            WorkflowDefinition.from_file(str(tmp_path / "missing.yaml"))

    def test_condition_value_is_stringified(self):
        workflow = WorkflowDefinition.from_dict(
            {
                "name": "w",
                "steps": [
                    {
                        "name": "s",
                        "type": "display",
                        "config": {"text": "x"},
                        "conditions": [{"field": "n", "operator": "equals", "value": 3}],
                    }
                ],
            }
        )
        assert workflow.steps[0].conditions[0].value == "3"

    def test_validate_reports_problems(self):
        workflow = WorkflowDefinition.from_dict(
            {
                "name": "broken",
                "steps": [
                    {"name": "a", "type": "teleport"},
                    {"name": "a", "type": "display", "config": {"text": "x"}},
                    {"name": "b", "type": "tool", "config": {}, "depends_on": ["ghost"]},
                    {
                        "name": "c",
                        "type": "display",
                        "config": {"text": "x"},
                        "conditions": [{"field": "a", "operator": "matches"}],
                        "post_transforms": [{"source": "a"}],
                        "retry": {"max_attempts": -1},
                    },
                ],
            }
        )

        errors = workflow.validate()

        assert any("invalid type 'teleport'" in e for e in errors)
        assert "Duplicate step name 'a'" in errors
        assert "Step 'b' of type 'tool' requires config 'tool'" in errors
        assert "Step 'b' depends on unknown step 'ghost'" in errors
        assert "Step 'c' has condition with unsupported operator 'matches'" in errors
        assert "Step 'c' has a transform without 'source' or 'transform'" in errors
        assert "Step 'c' has negative retry.max_attempts" in errors

    def test_display_accepts_text_or_prompt(self):
        workflow = WorkflowDefinition.from_dict(
            {"name": "w", "steps": [{"name": "d", "type": "display", "config": {}}]}
        )
        assert workflow.validate() == ["Step 'd' of type 'display' requires config 'text or prompt'"]

    def test_empty_workflow(self):
        errors = WorkflowDefinition(name="").validate()
        assert "Workflow must have a name" in errors
        assert "Workflow must have at least one step" in errors

    def test_validation_block_is_checked(self):
        steps = [{"name": "d", "type": "display", "config": {"text": "x"}}]
        bad = WorkflowDefinition.from_dict(
            {
                "name": "w",
                "steps": steps,
                "validation": {"on_failure": "fail", "rules": [{"name": "r"}]},
            }
        )
        good = WorkflowDefinition.from_dict(
            {
                "name": "w",
                "steps": steps,
                "validation": {"on_failure": "stop", "rules": [{"type": "regex"}]},
            }
        )

        errors = bad.validate()

        assert any(e.startswith("Invalid validation block: on_failure:") for e in errors)
        assert any(e.startswith("Invalid validation block: rules.0.type:") for e in errors)
        assert good.validate() == []
