"""Base transformer class and registry for data transforms."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from ..errors import ExpressionError, TransformError
from ..expressions import format_value, get_field

MISSING = object()


class BaseTransformer(ABC):
    """
    Base class for data transformers.

    Transformers are stateless; all configuration arrives in ``params``.
    Subclasses implement:
    - validate_params(): Check params before the transform runs
    - transform(): Produce the output value
    """

    name: str = ""
    description: str = ""

    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        """
        Validate transformer parameters.

        Returns:
            Error message if invalid, None if valid
        """
        return None

    @abstractmethod
    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        """
        Transform input data.

        Raises:
            TransformError: If the input cannot be transformed
        """
        pass


class TransformRegistry:
    """Registry for data transformers."""

    def __init__(self):
        """Initialize transform registry."""
        self._transformers: Dict[str, BaseTransformer] = {}

    def register(self, transformer: BaseTransformer):
        """
        Register a transformer under its name, replacing any existing one.

        Args:
            transformer: Transformer instance
        """
        if not transformer.name:
            raise ValueError(f"{type(transformer).__name__} has no name")
        self._transformers[transformer.name] = transformer

    def get(self, name: str) -> Optional[BaseTransformer]:
        """
        Get transformer by name.

        Returns:
            Transformer or None if not found
        """
        return self._transformers.get(name)

    def list_transformers(self) -> List[str]:
        """
        List all registered transformers.

        Returns:
            Sorted list of transformer names
        """
        return sorted(self._transformers.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._transformers


def require_string(input_data: Any) -> str:
    if not isinstance(input_data, str):
        raise TransformError(f"input must be string, got {type(input_data).__name__}")
    return input_data


def require_sequence(input_data: Any) -> List[Any]:
    if isinstance(input_data, (str, bytes)) or not isinstance(input_data, (list, tuple)):
        raise TransformError(f"input must be array or slice, got {type(input_data).__name__}")
    return list(input_data)


def extract_field(item: Any, field: str) -> Any:
    """Return ``item[field]`` (or the attribute), or MISSING when absent."""
    if isinstance(item, Mapping):
        return item.get(field, MISSING)
    if item is None or isinstance(item, (str, int, float, bool, list, tuple)):
        return MISSING
    try:
        return get_field(item, field)
    except ExpressionError:
        return MISSING


def to_text(value: Any) -> str:
    return format_value(value)
