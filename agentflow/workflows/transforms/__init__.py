"""
Data Transforms

Built-in transformers:
- extract_lines, regex_extract, parse_json, format_text, string_process
- filter_data, merge_data, deduplicate, sort_data
- aggregate
"""

from .base import BaseTransformer, TransformRegistry
from .aggregation import Aggregator
from .data import DataFilter, DataMerger, DataSorter, Deduplicator
from .text import JSONParser, LineExtractor, RegexExtractor, StringProcessor, TextFormatter
from .pipeline import TransformPipeline

BUILTIN_TRANSFORMERS = (
    LineExtractor,
    JSONParser,
    Aggregator,
    DataFilter,
    TextFormatter,
    DataMerger,
    Deduplicator,
    DataSorter,
    RegexExtractor,
    StringProcessor,
)


def create_default_registry() -> TransformRegistry:
    """Create a registry holding every built-in transformer."""
    registry = TransformRegistry()
    for transformer_class in BUILTIN_TRANSFORMERS:
        registry.register(transformer_class())
    return registry


__all__ = [
    "BaseTransformer",
    "TransformRegistry",
    "TransformPipeline",
    "create_default_registry",
    "Aggregator",
    "DataFilter",
    "DataMerger",
    "DataSorter",
    "Deduplicator",
    "JSONParser",
    "LineExtractor",
    "RegexExtractor",
    "StringProcessor",
    "TextFormatter",
]
