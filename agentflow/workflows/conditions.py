"""
Condition evaluation helpers shared by the engine and step executors.
"""

import logging
from typing import Any, Mapping, Optional, Sequence, Tuple

from ..runtime_data import ExecutionContext, StepResult
from .definition import StepCondition
from .errors import ConfigurationError
from .expressions import format_value

logger = logging.getLogger(__name__)

TRUE_VALUES = ("true", "yes", "1")
FALSE_VALUES = ("false", "no", "0", "")


def unwrap_response(value: Any) -> Any:
    """Unwrap interactive style outputs of the form {"response": ...}."""
    if isinstance(value, Mapping) and "response" in value:
        return value["response"]
    return value


def compare(actual: str, operator: str, expected: str) -> bool:
    """
    Apply a comparison operator to string operands.

    Raises:
        ConfigurationError: If the operator is not supported
    """
    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator == "contains":
        return expected in actual
    if operator == "not_contains":
        return expected not in actual
    if operator == "empty":
        return actual == ""
    if operator == "not_empty":
        return actual != ""
    raise ConfigurationError(f"unsupported operator: {operator}")


def evaluate_step_conditions(
    conditions: Sequence[StepCondition],
    step_results: Mapping[str, StepResult],
    context: ExecutionContext,
) -> bool:
    """
    Evaluate skip conditions with AND semantics.

    The field names a previous step or a data key; a field found in neither
    compares as the empty string.

    Raises:
        ConfigurationError: If a condition uses an unsupported operator
    """
    for condition in conditions:
        result = step_results.get(condition.field)
        if result is not None:
            value = unwrap_response(result.output)
        else:
            value = context.get_data(condition.field, "")
        actual = format_value(value)

        try:
            met = compare(actual, condition.operator, condition.value)
        except ConfigurationError as e:
            raise ConfigurationError(
                f"failed to evaluate condition {condition.field} "
                f"{condition.operator} {condition.value}: {e}"
            )

        logger.debug(
            f"Condition {condition.field} {condition.operator} "
            f"{condition.value!r} (actual {actual!r}) -> {met}"
        )
        if not met:
            return False

    return True


def evaluate_break_conditions(
    conditions: Sequence[StepCondition],
    iteration_results: Mapping[str, StepResult],
    context: ExecutionContext,
) -> Tuple[bool, Optional[str]]:
    """
    Evaluate loop break conditions with OR semantics.

    Each field is looked up in the iteration's successful step results, then
    in the iteration data. Missing fields and unknown operators are skipped.

    Returns:
        Tuple of (should_break, reason)
    """
    for condition in conditions:
        result = iteration_results.get(condition.field)
        if result is not None and result.success:
            value = unwrap_response(result.output)
        elif context.has_data(condition.field):
            value = context.get_data(condition.field)
        else:
            continue

        try:
            matched = compare(format_value(value), condition.operator, condition.value)
        except ConfigurationError:
            logger.warning(f"Unknown loop break condition operator: {condition.operator}")
            continue

        if matched:
            return True, (
                f"condition met: {condition.field} {condition.operator} {condition.value}"
            )

    return False, None


def evaluate_simple_condition(condition: str) -> bool:
    """
    Evaluate a rendered condition expression.

    Supports boolean literals, ``a == b``, ``a != b`` and ``a contains b``.
    Any other non-empty text is true.
    """
    condition = condition.strip()

    lowered = condition.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False

    if "==" in condition:
        parts = condition.split("==")
        if len(parts) == 2:
            return parts[0].strip() == parts[1].strip()

    if "!=" in condition:
        parts = condition.split("!=")
        if len(parts) == 2:
            return parts[0].strip() != parts[1].strip()

    if " contains " in condition:
        parts = condition.split(" contains ")
        if len(parts) == 2:
            return parts[1].strip() in parts[0].strip()

    return condition != ""


def is_truthy(rendered: str) -> bool:
    """
    Truthiness of a rendered transform condition.

    An expression left unresolved counts as true.
    """
    lowered = rendered.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no", ""):
        return False
    return rendered != ""
