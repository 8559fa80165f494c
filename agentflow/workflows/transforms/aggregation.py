"""Aggregation transformer."""

from typing import Any, Dict, List, Optional

from ..errors import TransformError
from .base import MISSING, BaseTransformer, extract_field, require_sequence

AGGREGATE_OPERATIONS = ("count", "sum", "average", "min", "max")


def to_float(value: Any) -> float:
    """Numeric value of an item; anything non-numeric counts as 0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


class Aggregator(BaseTransformer):
    """
    Aggregate a list: ``count``, ``sum``, ``average``, ``min`` or ``max``.

    With ``field`` set, each item contributes its field value and items
    without the field are skipped. ``sum`` and ``average`` always return
    floats (0.0 for an empty average); ``min``/``max`` of an empty list
    return None.
    """

    name = "aggregate"
    description = "Perform aggregation operations (count, sum, average)"

    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        operation = params.get("operation")
        if not isinstance(operation, str):
            return "operation parameter is required"
        if operation not in AGGREGATE_OPERATIONS:
            return f"invalid operation: {operation}. Valid operations: {list(AGGREGATE_OPERATIONS)}"
        return None

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        items = require_sequence(input_data)
        operation = params["operation"]
        field = params.get("field") or ""

        if operation == "count":
            return len(items)

        values = self._values(items, field)

        if operation == "sum":
            return float(sum(values))
        if operation == "average":
            return sum(values) / len(values) if values else 0.0
        if operation in ("min", "max"):
            if not items:
                return None
            if not values:
                return 0.0
            return min(values) if operation == "min" else max(values)

        raise TransformError(f"unsupported operation: {operation}")

    @staticmethod
    def _values(items: List[Any], field: str) -> List[float]:
        values = []
        for item in items:
            if field:
                item = extract_field(item, field)
                if item is MISSING:
                    continue
            values.append(to_float(item))
        return values
