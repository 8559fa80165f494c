"""
Workflow Definition

Parse, validate, and represent workflow definitions from YAML or JSON.
"""

import json
import yaml
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from pydantic import ValidationError


class StepType(str, Enum):
    """Closed set of executable step types."""

    TOOL = "tool"
    LLM = "llm"
    LLM_DISPLAY = "llm_display"
    LLM_WITH_TOOLS = "llm_with_tools"
    DISPLAY = "display"
    SCRIPT = "script"
    CONDITION = "condition"
    LOOP = "loop"
    PARALLEL = "parallel"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


CONDITION_OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "empty",
    "not_empty",
)

# Config keys a step type needs; any one of the listed keys is enough
REQUIRED_CONFIG_KEYS = {
    StepType.TOOL: ("tool",),
    StepType.LLM: ("prompt",),
    StepType.LLM_DISPLAY: ("prompt",),
    StepType.LLM_WITH_TOOLS: ("prompt",),
    StepType.DISPLAY: ("text", "prompt"),
    StepType.SCRIPT: ("script",),
    StepType.CONDITION: ("condition",),
    StepType.LOOP: ("steps",),
    StepType.PARALLEL: ("steps",),
}


@dataclass(frozen=True)
class StepCondition:
    """Skip condition evaluated before a step runs."""

    field: str
    operator: str
    value: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepCondition":
        """Create from dictionary."""
        value = data.get("value", "")
        return cls(
            field=str(data.get("field", "")),
            operator=str(data.get("operator", "")),
            value="" if value is None else str(value),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for a step."""

    max_attempts: int = 0
    backoff: str = "exponential"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RetryConfig":
        """Create from dictionary."""
        if not data:
            return cls()
        return cls(
            max_attempts=int(data.get("max_attempts", 0) or 0),
            backoff=str(data.get("backoff", "exponential")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"max_attempts": self.max_attempts, "backoff": self.backoff}


@dataclass(frozen=True)
class TransformDefinition:
    """A single data transform applied before or after a step."""

    name: str
    source: str
    transform: str
    params: Dict[str, Any] = field(default_factory=dict)
    store_as: str = ""
    condition: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransformDefinition":
        """Create from dictionary."""
        return cls(
            name=data.get("name", ""),
            source=data.get("source", ""),
            transform=data.get("transform", ""),
            params=dict(data.get("params") or {}),
            store_as=data.get("store_as", ""),
            condition=data.get("condition", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "name": self.name,
            "source": self.source,
            "transform": self.transform,
        }
        if self.params:
            result["params"] = self.params
        if self.store_as:
            result["store_as"] = self.store_as
        if self.condition:
            result["condition"] = self.condition
        return result


@dataclass(frozen=True)
class StepDefinition:
    """Workflow step definition."""

    name: str
    type: str
    config: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    retry: RetryConfig = field(default_factory=RetryConfig)
    continue_on_error: bool = False
    conditions: List[StepCondition] = field(default_factory=list)
    context_transforms: List[TransformDefinition] = field(default_factory=list)
    post_transforms: List[TransformDefinition] = field(default_factory=list)
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepDefinition":
        """
        Create from dictionary.

        Args:
            data: Step definition dictionary

        Returns:
            StepDefinition instance
        """
        depends_on = data.get("depends_on") or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]

        return cls(
            name=data.get("name", ""),
            type=data.get("type", ""),
            config=dict(data.get("config") or {}),
            depends_on=list(depends_on),
            retry=RetryConfig.from_dict(data.get("retry")),
            continue_on_error=bool(data.get("continue_on_error", False)),
            conditions=[
                StepCondition.from_dict(c) for c in data.get("conditions") or []
            ],
            context_transforms=[
                TransformDefinition.from_dict(t)
                for t in data.get("context_transforms") or []
            ],
            post_transforms=[
                TransformDefinition.from_dict(t)
                for t in data.get("post_transforms") or []
            ],
            description=data.get("description", ""),
        )

    @property
    def step_type(self) -> Optional[StepType]:
        """The parsed step type, or None if the type is unknown."""
        try:
            return StepType(self.type)
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert step to dictionary."""
        result: Dict[str, Any] = {"name": self.name, "type": self.type}
        if self.description:
            result["description"] = self.description
        if self.config:
            result["config"] = self.config
        if self.depends_on:
            result["depends_on"] = list(self.depends_on)
        if self.retry.max_attempts:
            result["retry"] = self.retry.to_dict()
        if self.continue_on_error:
            result["continue_on_error"] = True
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        if self.context_transforms:
            result["context_transforms"] = [t.to_dict() for t in self.context_transforms]
        if self.post_transforms:
            result["post_transforms"] = [t.to_dict() for t in self.post_transforms]
        return result


@dataclass
class WorkflowSettings:
    """Execution settings applied to every step of a workflow."""

    max_retries: int = 0
    step_timeout: Optional[float] = None
    parallel_execution: bool = True
    stop_on_failure: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkflowSettings":
        """Create from dictionary."""
        data = data or {}
        step_timeout = data.get("step_timeout")
        return cls(
            max_retries=int(data.get("max_retries", 0) or 0),
            step_timeout=float(step_timeout) if step_timeout else None,
            parallel_execution=bool(data.get("parallel_execution", True)),
            stop_on_failure=bool(data.get("stop_on_failure", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "step_timeout": self.step_timeout,
            "parallel_execution": self.parallel_execution,
            "stop_on_failure": self.stop_on_failure,
        }


@dataclass
class WorkflowDefinition:
    """
    Workflow definition.

    Represents a complete workflow parsed from YAML or JSON.
    """

    name: str
    description: str = ""
    steps: List[StepDefinition] = field(default_factory=list)
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    validation: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "WorkflowDefinition":
        """
        Parse workflow from YAML string.

        The document may either hold the workflow under a top-level
        ``workflow`` key or be the workflow mapping itself.

        Raises:
            ValueError: If YAML is invalid
        """
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}")

        return cls._from_document(data)

    @classmethod
    def from_json(cls, json_str: str) -> "WorkflowDefinition":
        """
        Parse workflow from JSON string.

        Raises:
            ValueError: If JSON is invalid
        """
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}")

        return cls._from_document(data)

    @classmethod
    def from_file(cls, file_path: str) -> "WorkflowDefinition":
        """
        Load workflow from a YAML or JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If the document is invalid
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Workflow file not found: {file_path}")

        with open(path, "r") as f:
            content = f.read()

        if path.suffix.lower() == ".json":
            return cls.from_json(content)
        return cls.from_yaml(content)

    @classmethod
    def _from_document(cls, data: Any) -> "WorkflowDefinition":
        if not isinstance(data, dict):
            raise ValueError("Workflow document must be a mapping")
        if "workflow" in data:
            data = data["workflow"]
            if not isinstance(data, dict):
                raise ValueError("'workflow' must be a mapping")
        if "steps" not in data:
            raise ValueError("Workflow document must contain 'steps'")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """
        Create from dictionary.

        Args:
            data: Workflow definition dictionary

        Returns:
            WorkflowDefinition instance
        """
        steps = [
            StepDefinition.from_dict(step_data)
            for step_data in data.get("steps") or []
        ]

        return cls(
            name=data.get("name", "unnamed"),
            description=data.get("description", ""),
            steps=steps,
            settings=WorkflowSettings.from_dict(data.get("settings")),
            validation=dict(data.get("validation") or {}),
            metadata=dict(data.get("metadata") or {}),
        )

    def validate(self) -> List[str]:
        """
        Validate workflow definition.

        Cycles are not reported here; they surface when the dependency
        graph is built.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.name:
            errors.append("Workflow must have a name")

        if not self.steps:
            errors.append("Workflow must have at least one step")

        seen = set()
        for index, step in enumerate(self.steps):
            if not step.name:
                errors.append(f"Step at index {index} must have a name")
                continue
            if step.name in seen:
                errors.append(f"Duplicate step name '{step.name}'")
            seen.add(step.name)

        valid_types = StepType.values()
        for step in self.steps:
            label = step.name or "<unnamed>"

            if step.step_type is None:
                errors.append(
                    f"Step '{label}' has invalid type '{step.type}'. "
                    f"Must be one of: {', '.join(valid_types)}"
                )
            else:
                keys = REQUIRED_CONFIG_KEYS.get(step.step_type, ())
                if keys and not any(key in step.config for key in keys):
                    errors.append(
                        f"Step '{label}' of type '{step.type}' requires config "
                        f"'{' or '.join(keys)}'"
                    )

            for dep in step.depends_on:
                if dep not in seen:
                    errors.append(f"Step '{label}' depends on unknown step '{dep}'")

            if step.retry.max_attempts < 0:
                errors.append(f"Step '{label}' has negative retry.max_attempts")

            for condition in step.conditions:
                if condition.operator not in CONDITION_OPERATORS:
                    errors.append(
                        f"Step '{label}' has condition with unsupported operator "
                        f"'{condition.operator}'"
                    )

            for transform in step.context_transforms + step.post_transforms:
                if not transform.source or not transform.transform:
                    errors.append(
                        f"Step '{label}' has a transform without 'source' or 'transform'"
                    )

        errors.extend(self._validation_block_errors())

        return errors

    def _validation_block_errors(self) -> List[str]:
        if not self.validation:
            return []

        from ..validation import ValidationConfig

        try:
            ValidationConfig.model_validate(self.validation)
        except ValidationError as e:
            return [
                f"Invalid validation block: {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
        return []

    def get_step(self, name: str) -> Optional[StepDefinition]:
        """Get a top-level step by name."""
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary.

        Returns:
            Dictionary representation
        """
        return {
            "name": self.name,
            "description": self.description,
            "steps": [step.to_dict() for step in self.steps],
            "settings": self.settings.to_dict(),
            "validation": self.validation,
            "metadata": self.metadata,
        }
