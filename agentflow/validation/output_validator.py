"""
Output validation for completed workflows.

Rules are checked against the aggregated workflow outputs once the run
finishes. Every failing rule is reported; the engine decides, based on
``on_failure``, whether a failure stops the run or is only logged.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..workflows.errors import OutputValidationError
from ..workflows.expressions import format_value

logger = logging.getLogger(__name__)


class ValidationRule(BaseModel):
    """One output validation rule"""

    name: str = ""
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)


class ValidationConfig(BaseModel):
    """Output validation settings of a workflow"""

    enabled: bool = True
    rules: List[ValidationRule] = Field(default_factory=list)
    on_failure: Literal["stop", "warn"] = "warn"


class RuleFailure(Exception):
    """A single rule did not hold."""


def data_type(data: Any) -> str:
    """JSON type name of a value."""
    if data is None:
        return "null"
    if isinstance(data, bool):
        return "boolean"
    if isinstance(data, (int, float)):
        return "number"
    if isinstance(data, str):
        return "string"
    if isinstance(data, (list, tuple)):
        return "array"
    if isinstance(data, Mapping):
        return "object"
    return "unknown"


def _number(config: Dict[str, Any], key: str) -> Optional[float]:
    value = config.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class OutputValidator:
    """
    Validates workflow outputs against schema, regex and custom rules.

    Rule types:
    - schema: ``config.schema`` with ``type`` and ``required`` keys
    - regex: ``config.pattern`` searched in the text form of the data
    - custom: ``config.validator`` = not_empty | length_range | value_range
    """

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or ValidationConfig(enabled=False)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["OutputValidator"]:
        """Build a validator from a workflow's ``validation`` block, or None if absent."""
        if not data:
            return None
        return cls(ValidationConfig(**data))

    @property
    def stop_on_failure(self) -> bool:
        return self.config.on_failure == "stop"

    def validate(self, data: Any):
        """
        Check data against every rule.

        Raises:
            OutputValidationError: Listing every failed rule
        """
        if not self.config.enabled:
            return

        logger.info(f"Validating output against {len(self.config.rules)} rules")

        errors = []
        for rule in self.config.rules:
            try:
                self.validate_rule(data, rule)
            except RuleFailure as e:
                logger.error(f"Validation rule '{rule.name}' failed: {e}")
                errors.append(f"Rule '{rule.name}': {e}")

        if errors:
            raise OutputValidationError(errors)

    def validate_rule(self, data: Any, rule: ValidationRule):
        if rule.type == "schema":
            self._validate_schema(data, rule.config)
        elif rule.type == "regex":
            self._validate_regex(data, rule.config)
        elif rule.type == "custom":
            self._validate_custom(data, rule.config)
        else:
            raise RuleFailure(f"unsupported validation type: {rule.type}")

    @staticmethod
    def _validate_schema(data: Any, config: Dict[str, Any]):
        schema = config.get("schema")
        if not isinstance(schema, Mapping):
            raise RuleFailure("schema not specified or invalid")

        required_type = schema.get("type")
        if isinstance(required_type, str):
            actual = data_type(data)
            if actual != required_type:
                raise RuleFailure(f"expected type {required_type}, got {actual}")

        if isinstance(data, Mapping):
            for field_name in schema.get("required") or []:
                if isinstance(field_name, str) and field_name not in data:
                    raise RuleFailure(f"required field '{field_name}' is missing")

    @staticmethod
    def _validate_regex(data: Any, config: Dict[str, Any]):
        pattern = config.get("pattern")
        if not isinstance(pattern, str):
            raise RuleFailure("regex pattern not specified")
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise RuleFailure(f"invalid regex pattern: {e}")

        if not regex.search(format_value(data)):
            raise RuleFailure(f"data does not match pattern '{pattern}'")

    def _validate_custom(self, data: Any, config: Dict[str, Any]):
        validator = config.get("validator")
        if not isinstance(validator, str):
            raise RuleFailure("custom validator type not specified")

        if validator == "not_empty":
            self._validate_not_empty(data)
        elif validator == "length_range":
            self._validate_length_range(data, config)
        elif validator == "value_range":
            self._validate_value_range(data, config)
        else:
            raise RuleFailure(f"unsupported custom validator: {validator}")

    @staticmethod
    def _validate_not_empty(data: Any):
        if data is None:
            raise RuleFailure("data is nil")
        if isinstance(data, str) and data == "":
            raise RuleFailure("string is empty")
        if isinstance(data, (list, tuple)) and not data:
            raise RuleFailure("array is empty")
        if isinstance(data, Mapping) and not data:
            raise RuleFailure("object is empty")

    @staticmethod
    def _validate_length_range(data: Any, config: Dict[str, Any]):
        if not isinstance(data, (str, list, tuple, Mapping)):
            raise RuleFailure(f"length validation not supported for type {type(data).__name__}")
        length = len(data)

        minimum = _number(config, "min")
        if minimum is not None and length < int(minimum):
            raise RuleFailure(f"length {length} is less than minimum {int(minimum)}")
        maximum = _number(config, "max")
        if maximum is not None and length > int(maximum):
            raise RuleFailure(f"length {length} is greater than maximum {int(maximum)}")

    @staticmethod
    def _validate_value_range(data: Any, config: Dict[str, Any]):
        if isinstance(data, bool) or not isinstance(data, (int, float)):
            raise RuleFailure(f"value range validation not supported for type {type(data).__name__}")
        value = float(data)

        minimum = _number(config, "min")
        if minimum is not None and value < minimum:
            raise RuleFailure(f"value {value:f} is less than minimum {minimum:f}")
        maximum = _number(config, "max")
        if maximum is not None and value > maximum:
            raise RuleFailure(f"value {value:f} is greater than maximum {maximum:f}")
