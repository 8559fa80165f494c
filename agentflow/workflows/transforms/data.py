"""Collection transformers: filter, merge, deduplicate and sort."""

import functools
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from ..errors import TransformError
from .base import MISSING, BaseTransformer, require_sequence, to_text


def _parse_number(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None


def compare_values(a: Any, b: Any) -> int:
    """Compare numerically when both sides parse as numbers, else as text."""
    a_text, b_text = to_text(a), to_text(b)

    a_num, b_num = _parse_number(a_text), _parse_number(b_text)
    if a_num is not None and b_num is not None:
        return (a_num > b_num) - (a_num < b_num)

    return (a_text > b_text) - (a_text < b_text)


class DataFilter(BaseTransformer):
    """
    Keep the items that satisfy ``condition``.

    Conditions: ``contains:<text>``, ``equals:<text>``, ``not_empty``
    (rejects "", "0" and "false"); anything else is a substring test.
    With ``field`` set, mapping items are tested on that field and items
    lacking it are dropped.
    """

    name = "filter_data"
    description = "Filter array/slice by field conditions"

    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        if "condition" not in params:
            return "condition parameter is required"
        return None

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        items = require_sequence(input_data)
        condition = params["condition"]
        if not isinstance(condition, str):
            raise TransformError(f"condition must be string, got {type(condition).__name__}")
        field = params.get("field") or ""

        return [item for item in items if self._matches(item, field, condition)]

    @staticmethod
    def _matches(item: Any, field: str, condition: str) -> bool:
        value = item
        if field and isinstance(item, Mapping):
            if field not in item:
                return False
            value = item[field]

        text = to_text(value)
        if condition.startswith("contains:"):
            return condition[len("contains:"):] in text
        if condition.startswith("equals:"):
            return text == condition[len("equals:"):]
        if condition.startswith("not_empty"):
            return text not in ("", "0", "false")
        return condition in text


class DataMerger(BaseTransformer):
    """Merge ``params.additional`` into a mapping input; other inputs pass through."""

    name = "merge_data"
    description = "Merge multiple data sources"

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        if isinstance(input_data, Mapping):
            merged = dict(input_data)
            additional = params.get("additional")
            if isinstance(additional, Mapping):
                merged.update(additional)
            return merged
        return input_data


class Deduplicator(BaseTransformer):
    """Drop repeated items, keeping the first occurrence. Keyed by ``field`` when set."""

    name = "deduplicate"
    description = "Remove duplicate entries from array"

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        items = require_sequence(input_data)
        field = params.get("field") or ""

        seen = set()
        result: List[Any] = []
        for item in items:
            if field:
                value = item.get(field, MISSING) if isinstance(item, Mapping) else MISSING
                key = "" if value is MISSING else to_text(value)
            else:
                key = to_text(item)

            if key not in seen:
                seen.add(key)
                result.append(item)
        return result


class DataSorter(BaseTransformer):
    """Stable sort by value or by ``field``; ``order`` is ``asc`` (default) or ``desc``."""

    name = "sort_data"
    description = "Sort array by field or value"

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        items = require_sequence(input_data)
        field = params.get("field") or ""
        descending = params.get("order") == "desc"

        def sort_value(item: Any) -> Any:
            if field and isinstance(item, Mapping) and field in item:
                return item[field]
            return item

        def compare(a: Any, b: Any) -> int:
            result = compare_values(sort_value(a), sort_value(b))
            return -result if descending else result

        return sorted(items, key=functools.cmp_to_key(compare))
