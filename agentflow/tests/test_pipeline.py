"""Tests for the context/post transform pipeline."""

import pytest

from agentflow.runtime_data import StepResult
from agentflow.workflows import (
    ExpressionResolver,
    StepDefinition,
    TransformDefinition,
    TransformError,
)
from agentflow.workflows.transforms import BaseTransformer, TransformPipeline, create_default_registry


@pytest.fixture
def pipeline():
    return TransformPipeline(create_default_registry(), ExpressionResolver())


def make_step(context_transforms=(), post_transforms=()):
    return StepDefinition(
        name="step",
        type="display",
        config={"text": "x"},
        context_transforms=[TransformDefinition.from_dict(t) for t in context_transforms],
        post_transforms=[TransformDefinition.from_dict(t) for t in post_transforms],
    )


class TestResolveSource:
    def test_step_output_and_paths(self, pipeline, context):
        results = context.step_results_snapshot()
        assert pipeline.resolve_source("fetch", results, context)["total"] == 2
        assert pipeline.resolve_source("fetch.items[0].name", results, context) == "a"
        assert pipeline.resolve_source("ask", results, context) == "yes"

    def test_data_bag(self, pipeline, context):
        assert pipeline.resolve_source("user", {}, context) == "alice"

    def test_missing_field_on_step_output(self, pipeline, context):
        results = context.step_results_snapshot()
        with pytest.raises(TransformError, match="field 'nope' not found in map"):
            pipeline.resolve_source("fetch.nope", results, context)

    def test_unknown_source(self, pipeline, context):
        with pytest.raises(TransformError, match="source 'ghost' not found"):
            pipeline.resolve_source("ghost", {}, context)


class TestExecuteTransform:
    def test_result_is_stored(self, pipeline, context):
        transform = TransformDefinition(
            name="count_items",
            source="fetch.items",
            transform="aggregate",
            params={"operation": "sum", "field": "size"},
            store_as="total_size",
        )
        result = pipeline.execute_transform(transform, context.step_results_snapshot(), context)
        assert result == 3.0
        assert context.get_data("total_size") == 3.0

    def test_false_condition_skips(self, pipeline, context):
        context.set_data("enabled", False)
        transform = TransformDefinition(
            name="t", source="user", transform="string_process",
            params={"operation": "upper"}, store_as="shout", condition="enabled",
        )
        assert pipeline.execute_transform(transform, {}, context) is None
        assert not context.has_data("shout")

    def test_unresolved_condition_runs(self, pipeline, context):
        transform = TransformDefinition(
            name="t", source="user", transform="string_process",
            params={"operation": "upper"}, store_as="shout", condition="not_defined",
        )
        assert pipeline.execute_transform(transform, {}, context) == "ALICE"
        assert context.get_data("shout") == "ALICE"

    def test_unknown_transformer(self, pipeline, context):
        transform = TransformDefinition(name="t", source="user", transform="teleport")
        with pytest.raises(TransformError, match="transformer 'teleport' not found"):
            pipeline.execute_transform(transform, {}, context)

    def test_invalid_params(self, pipeline, context):
        transform = TransformDefinition(name="t", source="user", transform="extract_lines")
        with pytest.raises(TransformError, match="invalid parameters for transformer 'extract_lines'"):
            pipeline.execute_transform(transform, {}, context)

    def test_transform_failure_is_wrapped(self, pipeline, context):
        transform = TransformDefinition(name="t", source="user", transform="parse_json")
        with pytest.raises(TransformError, match="transformation 'parse_json' failed"):
            pipeline.execute_transform(transform, {}, context)

    def test_unexpected_transformer_error_is_wrapped(self, pipeline, context):
        class Broken(BaseTransformer):
            name = "broken"

            def transform(self, input_data, params):
                return input_data + 1

        pipeline.registry.register(Broken())
        transform = TransformDefinition(name="t", source="user", transform="broken", store_as="out")
        with pytest.raises(TransformError, match="transformation 'broken' failed: TypeError"):
            pipeline.execute_transform(transform, {}, context)
        assert not context.has_data("out")

    def test_bad_delimiter_is_a_transform_error(self, pipeline, context):
        transform = TransformDefinition(
            name="t", source="user", transform="string_process",
            params={"operation": "split", "delimiter": 5},
        )
        with pytest.raises(TransformError, match="delimiter must be string"):
            pipeline.execute_transform(transform, {}, context)


class TestPrePostTransforms:
    def test_pre_transforms_chain_through_data(self, pipeline, context):
        step = make_step(
            context_transforms=[
                {"source": "fetch.items", "transform": "sort_data",
                 "params": {"field": "size", "order": "desc"}, "store_as": "sorted"},
                {"source": "sorted", "transform": "aggregate",
                 "params": {"operation": "count"}, "store_as": "how_many"},
            ]
        )
        pipeline.execute_pre_transforms(step, context)
        assert [item["name"] for item in context.get_data("sorted")] == ["b", "a"]
        assert context.get_data("how_many") == 2

    def test_post_transforms_see_own_result(self, pipeline, context):
        step = make_step(
            post_transforms=[
                {"source": "step", "transform": "extract_lines",
                 "params": {"pattern": "ERROR", "mode": "count"}, "store_as": "error_count"},
            ]
        )
        result = StepResult(step_name="step", success=True, output="ERROR a\nok\nERROR b")
        pipeline.execute_post_transforms(step, result, context)
        assert context.get_data("error_count") == 2

    def test_failure_names_phase_and_index(self, pipeline, context):
        step = make_step(
            context_transforms=[
                {"source": "user", "transform": "string_process",
                 "params": {"operation": "trim"}, "store_as": "clean"},
                {"source": "ghost", "transform": "parse_json"},
            ]
        )
        with pytest.raises(TransformError, match="pre-transform 1 failed"):
            pipeline.execute_pre_transforms(step, context)
        assert context.get_data("clean") == "alice"
