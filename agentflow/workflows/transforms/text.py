"""Text transformers: line and regex extraction, JSON parsing, formatting, string ops."""

import json
import re
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from ..errors import TransformError
from .base import BaseTransformer, require_string, to_text

_TITLE_WORD_START = re.compile(r"(?<!\w)(\w)")


def _compile(pattern: Any) -> "re.Pattern[str]":
    if not isinstance(pattern, str):
        raise TransformError(f"pattern must be string, got {type(pattern).__name__}")
    try:
        return re.compile(pattern)
    except re.error as e:
        raise TransformError(f"invalid regex pattern: {e}")


def _check_delimiter(params: Dict[str, Any]) -> Optional[str]:
    delimiter = params.get("delimiter")
    if delimiter is not None and not isinstance(delimiter, str):
        return f"delimiter must be string, got {type(delimiter).__name__}"
    return None


class LineExtractor(BaseTransformer):
    """
    Keep the lines of the input that match ``pattern``.

    Output depends on ``mode``: ``count`` gives the number of matches,
    ``first`` the first matching line (when there is one), ``joined`` the
    matches joined by ``delimiter`` (default newline). Otherwise a list.
    """

    name = "extract_lines"
    description = "Extract lines matching a regex pattern"

    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        if "pattern" not in params:
            return "pattern parameter is required"
        return _check_delimiter(params)

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        text = require_string(input_data)
        regex = _compile(params["pattern"])

        matched = [line for line in text.split("\n") if regex.search(line)]

        mode = params.get("mode")
        if mode == "count":
            return len(matched)
        if mode == "first" and matched:
            return matched[0]
        if mode == "joined":
            delimiter = params.get("delimiter") or "\n"
            return delimiter.join(matched)
        return matched


class JSONParser(BaseTransformer):
    name = "parse_json"
    description = "Parse JSON from string input"

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        text = require_string(input_data)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise TransformError(f"failed to parse JSON: {e}")


class TextFormatter(BaseTransformer):
    """
    Fill ``template`` with the input.

    ``{input}`` is replaced by the whole input; when the input is a mapping
    each ``{key}`` is replaced by its value as well.
    """

    name = "format_text"
    description = "Format text using template strings"

    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        if "template" not in params:
            return "template parameter is required"
        return None

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        template = params["template"]
        if not isinstance(template, str):
            raise TransformError(f"template must be string, got {type(template).__name__}")

        result = template.replace("{input}", to_text(input_data))
        if isinstance(input_data, Mapping):
            for key, value in input_data.items():
                result = result.replace("{" + str(key) + "}", to_text(value))
        return result


class RegexExtractor(BaseTransformer):
    """
    Extract capture groups from every match of ``pattern``.

    Each match contributes its single group, or the list of groups when the
    pattern has several. Matches without groups are ignored. With
    ``mode: first`` only the first group of the first match is returned.
    """

    name = "regex_extract"
    description = "Extract data using regex capture groups"

    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        if "pattern" not in params:
            return "pattern parameter is required"
        return None

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        text = require_string(input_data)
        regex = _compile(params["pattern"])

        matches = [[g if g is not None else "" for g in m.groups()] for m in regex.finditer(text)]
        if not matches:
            return []

        if params.get("mode") == "first" and matches[0]:
            return matches[0][0]

        result: List[Any] = []
        for groups in matches:
            if len(groups) == 1:
                result.append(groups[0])
            elif groups:
                result.append(groups)
        return result


class StringProcessor(BaseTransformer):
    name = "string_process"
    description = "Process strings (trim, case, replace)"

    def validate_params(self, params: Dict[str, Any]) -> Optional[str]:
        if "operation" not in params:
            return "operation parameter is required"
        return _check_delimiter(params)

    def transform(self, input_data: Any, params: Dict[str, Any]) -> Any:
        text = require_string(input_data)
        operation = params["operation"]

        if operation == "trim":
            return text.strip()
        if operation == "lower":
            return text.lower()
        if operation == "upper":
            return text.upper()
        if operation == "title":
            # capitalise word starts only, the rest of each word is kept
            return _TITLE_WORD_START.sub(lambda m: m.group(1).upper(), text)
        if operation == "replace":
            old = params.get("old") if isinstance(params.get("old"), str) else ""
            new = params.get("new") if isinstance(params.get("new"), str) else ""
            return text.replace(old, new)
        if operation == "split":
            delimiter = params.get("delimiter") or "\n"
            return text.split(delimiter)
        if operation == "length":
            return len(text)
        raise TransformError(f"unsupported operation: {operation}")
