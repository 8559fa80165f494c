"""
Expression Resolver

Renders ``{expression}`` placeholders in templates against step results and
the execution data bag.

Supported expressions, in order of precedence:
- Function calls: ``{join(split(csv, ','), '-')}``
- Dot paths: ``{step.field.subfield}``
- Index, slice and wildcard access: ``{step[0]}``, ``{step[1:3]}``, ``{step[*].name}``
- Simple references: ``{step}`` or ``{data_key}``
"""

import dataclasses
import logging
import re
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..runtime_data import ExecutionContext, StepResult
from .errors import ExpressionError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{([^}]+)\}")
FUNCTION_PATTERN = re.compile(r"^(\w+)\((.*)\)$", re.DOTALL)

DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

TemplateFunction = Callable[[List[Any]], Any]


def format_value(value: Any) -> str:
    """Convert a resolved value into its template text form."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return "\n".join(format_value(item) for item in value)
    if isinstance(value, Mapping):
        return "\n".join(f"{key}={format_value(item)}" for key, item in value.items())
    return str(value)


def _normalize_name(name: str) -> str:
    return name.replace("_", "").lower()


def _attribute_names(obj: Any) -> List[str]:
    if dataclasses.is_dataclass(obj):
        return [f.name for f in dataclasses.fields(obj)]
    model_fields = getattr(type(obj), "model_fields", None)
    if isinstance(model_fields, Mapping):
        return list(model_fields.keys())
    return [name for name in getattr(obj, "__dict__", {}) if not name.startswith("_")]


def get_field(obj: Any, name: str) -> Any:
    """
    Read a named field from a map or an object.

    Maps are looked up by exact key. Objects (dataclasses, pydantic models,
    plain instances) are read by attribute, falling back to a case and
    underscore insensitive match on their public field names.

    Raises:
        ExpressionError: If the field does not exist
    """
    if obj is None:
        raise ExpressionError(f"cannot access field '{name}' on nil object")

    if isinstance(obj, Mapping):
        if name in obj:
            return obj[name]
        raise ExpressionError(f"field '{name}' not found in map")

    if isinstance(obj, (str, bytes, int, float, bool, list, tuple, set)):
        raise ExpressionError(
            f"cannot access field '{name}' on type {type(obj).__name__}"
        )

    names = _attribute_names(obj)
    if name in names:
        return getattr(obj, name)

    wanted = _normalize_name(name)
    for candidate in names:
        if _normalize_name(candidate) == wanted:
            return getattr(obj, candidate)

    raise ExpressionError(f"field '{name}' not found in {type(obj).__name__}")


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _get_element(obj: Any, key: str) -> Any:
    if obj is None:
        raise ExpressionError("cannot index nil object")

    if _is_sequence(obj):
        try:
            index = int(key)
        except ValueError:
            raise ExpressionError(f"invalid array index: {key}")
        if index < 0 or index >= len(obj):
            raise ExpressionError(
                f"array index {index} out of bounds (length {len(obj)})"
            )
        return obj[index]

    if isinstance(obj, Mapping):
        if len(key) >= 2 and key[0] == key[-1] and key[0] in ("'", '"'):
            key = key[1:-1]
        if key not in obj:
            raise ExpressionError(f"key '{key}' not found in map")
        return obj[key]

    raise ExpressionError(f"cannot index type {type(obj).__name__}")


def _get_slice(obj: Any, spec: str) -> List[Any]:
    parts = spec.split(":")
    if len(parts) != 2:
        raise ExpressionError(f"invalid slice syntax: {spec}")
    if not _is_sequence(obj):
        raise ExpressionError(f"slice access not supported for type {type(obj).__name__}")

    length = len(obj)
    try:
        start = int(parts[0]) if parts[0].strip() else 0
    except ValueError:
        raise ExpressionError(f"invalid start index: {parts[0]}")
    try:
        end = int(parts[1]) if parts[1].strip() else length
    except ValueError:
        raise ExpressionError(f"invalid end index: {parts[1]}")

    if start < 0 or start > length:
        raise ExpressionError(f"start index {start} out of bounds")
    if end < 0 or end > length:
        raise ExpressionError(f"end index {end} out of bounds")
    if start > end:
        raise ExpressionError(f"start index {start} greater than end index {end}")

    return list(obj[start:end])


def _get_all(obj: Any) -> List[Any]:
    if _is_sequence(obj):
        return list(obj)
    if isinstance(obj, Mapping):
        return list(obj.values())
    raise ExpressionError(
        f"wildcard access not supported for type {type(obj).__name__}"
    )


def parse_path(expression: str) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Split a path expression into its root name and accessor segments.

    ``a.b[0][1:2].c`` becomes ``("a", [("field", "b"), ("index", "0"),
    ("index", "1:2"), ("field", "c")])``.
    """
    match = re.match(r"[^.\[]*", expression)
    root = match.group(0).strip()
    if not root:
        raise ExpressionError(f"invalid path expression: {expression}")

    segments: List[Tuple[str, str]] = []
    position = match.end()
    while position < len(expression):
        char = expression[position]
        if char == ".":
            field_match = re.match(r"[^.\[]*", expression[position + 1:])
            name = field_match.group(0).strip()
            if not name:
                raise ExpressionError(f"empty field name in path: {expression}")
            segments.append(("field", name))
            position += 1 + field_match.end()
        elif char == "[":
            close = expression.find("]", position)
            if close == -1:
                raise ExpressionError(f"invalid array access syntax: {expression}")
            segments.append(("index", expression[position + 1:close].strip()))
            position = close + 1
        else:
            raise ExpressionError(f"invalid path expression: {expression}")

    return root, segments


def split_arguments(args: str) -> List[str]:
    """Split a function argument list on top-level commas."""
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    quote: Optional[str] = None

    for char in args:
        if quote:
            if char == quote:
                quote = None
            current.append(char)
        elif char in ("'", '"'):
            quote = char
            current.append(char)
        elif char == "(":
            depth += 1
            current.append(char)
        elif char == ")":
            depth -= 1
            current.append(char)
        elif char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)

    if current:
        parts.append("".join(current))

    return parts


def parse_literal(text: str) -> Any:
    """Parse a literal argument: quoted string, boolean, number, or bare text."""
    text = text.strip()

    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]

    if text == "true":
        return True
    if text == "false":
        return False

    try:
        number = float(text)
    except ValueError:
        return text
    if number.is_integer():
        return int(number)
    return number


# Built-in template functions


def _expect_args(name: str, args: List[Any], count: int):
    if len(args) != count:
        noun = "argument" if count == 1 else "arguments"
        raise ExpressionError(f"{name}() expects {count} {noun}, got {len(args)}")


def _to_number(function: str, position: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ExpressionError(f"{position} argument to {function}(): cannot convert bool to number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ExpressionError(
        f"{position} argument to {function}(): cannot convert {value!r} to number"
    )


def _numbers(name: str, args: List[Any]) -> Tuple[float, float]:
    _expect_args(name, args, 2)
    return _to_number(name, "first", args[0]), _to_number(name, "second", args[1])


def _integral_result(a: float, b: float, result: float) -> Any:
    if a.is_integer() and b.is_integer():
        return int(result)
    return result


def _len(args: List[Any]) -> int:
    _expect_args("len", args, 1)
    value = args[0]
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value)
    raise ExpressionError(f"len() not supported for type {type(value).__name__}")


def _join(args: List[Any]) -> str:
    _expect_args("join", args, 2)
    items, delimiter = args
    if not _is_sequence(items):
        raise ExpressionError(
            f"join() first argument must be array or slice, got {type(items).__name__}"
        )
    if not isinstance(delimiter, str):
        raise ExpressionError(
            f"join() second argument must be string, got {type(delimiter).__name__}"
        )
    return delimiter.join(format_value(item) for item in items)


def _filter(args: List[Any]) -> List[Any]:
    _expect_args("filter", args, 2)
    items = args[0]
    if not _is_sequence(items):
        raise ExpressionError(
            f"filter() first argument must be array or slice, got {type(items).__name__}"
        )
    predicate = format_value(args[1])
    return [item for item in items if predicate in format_value(item)]


def _map(args: List[Any]) -> Any:
    _expect_args("map", args, 1)
    return args[0]


def _first(args: List[Any]) -> Any:
    _expect_args("first", args, 1)
    items = args[0]
    if not _is_sequence(items):
        raise ExpressionError(
            f"first() argument must be array or slice, got {type(items).__name__}"
        )
    return items[0] if items else None


def _last(args: List[Any]) -> Any:
    _expect_args("last", args, 1)
    items = args[0]
    if not _is_sequence(items):
        raise ExpressionError(
            f"last() argument must be array or slice, got {type(items).__name__}"
        )
    return items[-1] if items else None


def _contains(args: List[Any]) -> bool:
    _expect_args("contains", args, 2)
    return format_value(args[1]) in format_value(args[0])


def _split(args: List[Any]) -> List[str]:
    _expect_args("split", args, 2)
    text, delimiter = args
    if not isinstance(text, str):
        raise ExpressionError(
            f"split() first argument must be string, got {type(text).__name__}"
        )
    if not isinstance(delimiter, str):
        raise ExpressionError(
            f"split() second argument must be string, got {type(delimiter).__name__}"
        )
    if delimiter == "":
        return list(text)
    return text.split(delimiter)


def _add(args: List[Any]) -> Any:
    a, b = _numbers("add", args)
    return _integral_result(a, b, a + b)


def _subtract(args: List[Any]) -> Any:
    a, b = _numbers("subtract", args)
    return _integral_result(a, b, a - b)


def _multiply(args: List[Any]) -> Any:
    a, b = _numbers("multiply", args)
    return _integral_result(a, b, a * b)


def _divide(args: List[Any]) -> float:
    a, b = _numbers("divide", args)
    if b == 0:
        raise ExpressionError("division by zero")
    return a / b


def _timestamp(args: List[Any]) -> str:
    if len(args) > 1:
        raise ExpressionError(f"timestamp() expects at most 1 argument, got {len(args)}")
    fmt = format_value(args[0]) if args else DEFAULT_TIMESTAMP_FORMAT
    return datetime.now().strftime(fmt or DEFAULT_TIMESTAMP_FORMAT)


BUILTIN_FUNCTIONS: Mapping[str, TemplateFunction] = MappingProxyType(
    {
        "len": _len,
        "join": _join,
        "filter": _filter,
        "map": _map,
        "first": _first,
        "last": _last,
        "contains": _contains,
        "split": _split,
        "add": _add,
        "subtract": _subtract,
        "multiply": _multiply,
        "divide": _divide,
        "timestamp": _timestamp,
    }
)


class ExpressionResolver:
    """
    Resolves template expressions against an execution context.

    The function table is fixed at construction time. A bare step name
    yields the ``response`` of a response-shaped output, but the root of a
    dot or index path is the raw output, so ``{ask.response}`` is needed to
    reach into it.
    """

    def __init__(self, functions: Optional[Mapping[str, TemplateFunction]] = None):
        """
        Initialize resolver.

        Args:
            functions: Template function table; defaults to BUILTIN_FUNCTIONS
        """
        table = BUILTIN_FUNCTIONS if functions is None else functions
        self._functions: Mapping[str, TemplateFunction] = MappingProxyType(dict(table))

    @property
    def functions(self) -> Mapping[str, TemplateFunction]:
        return self._functions

    def render(
        self,
        template: str,
        context: ExecutionContext,
        step_results: Optional[Mapping[str, StepResult]] = None,
    ) -> str:
        """
        Replace every ``{expression}`` span in a template.

        Expressions that cannot be resolved are logged and left verbatim.

        Args:
            template: Template text
            context: Execution context providing the data bag
            step_results: Step results to resolve against; defaults to the
                context's current step results

        Returns:
            Rendered text
        """
        if not template:
            return template or ""

        results = step_results if step_results is not None else context.step_results_snapshot()
        rendered: Dict[str, str] = {}

        def substitute(match: "re.Match[str]") -> str:
            full_match = match.group(0)
            if full_match in rendered:
                return rendered[full_match]

            expression = match.group(1).strip()
            try:
                value = self._resolve(expression, results, context)
            except ExpressionError as e:
                logger.warning(f"Failed to resolve template expression '{expression}': {e}")
                rendered[full_match] = full_match
                return full_match

            text = format_value(value)
            logger.debug(
                f"Template substitution '{expression}' -> "
                f"{type(value).__name__} ({len(text)} chars)"
            )
            rendered[full_match] = text
            return text

        return PLACEHOLDER_PATTERN.sub(substitute, template)

    def resolve(
        self,
        expression: str,
        context: ExecutionContext,
        step_results: Optional[Mapping[str, StepResult]] = None,
    ) -> Any:
        """
        Resolve a single expression (without braces) to a raw value.

        Raises:
            ExpressionError: If the expression cannot be resolved
        """
        results = step_results if step_results is not None else context.step_results_snapshot()
        return self._resolve(expression.strip(), results, context)

    def _resolve(
        self,
        expression: str,
        step_results: Mapping[str, StepResult],
        context: ExecutionContext,
    ) -> Any:
        if "(" in expression and expression.endswith(")"):
            return self._resolve_function(expression, step_results, context)

        if "." in expression or ("[" in expression and "]" in expression):
            return self._resolve_path(expression, step_results, context)

        return self._resolve_reference(expression, step_results, context, unwrap=True)

    def _resolve_function(
        self,
        expression: str,
        step_results: Mapping[str, StepResult],
        context: ExecutionContext,
    ) -> Any:
        match = FUNCTION_PATTERN.match(expression)
        if not match:
            raise ExpressionError(f"invalid function syntax: {expression}")

        name, args_text = match.group(1), match.group(2).strip()
        function = self._functions.get(name)
        if function is None:
            raise ExpressionError(f"unknown function: {name}")

        args: List[Any] = []
        if args_text:
            for arg_text in split_arguments(args_text):
                arg_text = arg_text.strip()
                try:
                    args.append(self._resolve(arg_text, step_results, context))
                except ExpressionError:
                    args.append(parse_literal(arg_text))

        try:
            return function(args)
        except ExpressionError:
            raise
        except (TypeError, ValueError, ArithmeticError) as e:
            raise ExpressionError(f"{name}() failed: {e}")

    def _resolve_path(
        self,
        expression: str,
        step_results: Mapping[str, StepResult],
        context: ExecutionContext,
    ) -> Any:
        root, segments = parse_path(expression)
        current = self._resolve_reference(root, step_results, context, unwrap=False)
        spread = False

        for kind, key in segments:
            try:
                if spread:
                    current = [self._apply_segment(item, kind, key) for item in current]
                else:
                    current = self._apply_segment(current, kind, key)
            except ExpressionError as e:
                raise ExpressionError(f"failed to access '{key}' in path '{expression}': {e}")
            if kind == "index" and key == "*":
                spread = True

        return current

    @staticmethod
    def _apply_segment(value: Any, kind: str, key: str) -> Any:
        if kind == "field":
            return get_field(value, key)
        if key == "*":
            return _get_all(value)
        if ":" in key:
            return _get_slice(value, key)
        return _get_element(value, key)

    @staticmethod
    def _resolve_reference(
        name: str,
        step_results: Mapping[str, StepResult],
        context: ExecutionContext,
        unwrap: bool,
    ) -> Any:
        result = step_results.get(name)
        if result is not None and result.success and result.output is not None:
            output = result.output
            if unwrap and isinstance(output, Mapping) and "response" in output:
                return output["response"]
            return output

        if context.has_data(name):
            return context.get_data(name)

        raise ExpressionError(f"reference not found: {name}")
