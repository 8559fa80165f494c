"""
Transform pipeline.

Runs a step's ``context_transforms`` before it executes and its
``post_transforms`` after it succeeds, storing each result in the
execution data bag under ``store_as``.
"""

import logging
from collections.abc import Mapping
from typing import Any, Dict, Optional, Sequence

from ...runtime_data import ExecutionContext, StepResult
from ..conditions import is_truthy
from ..definition import StepDefinition, TransformDefinition
from ..errors import ExpressionError, TransformError
from ..expressions import ExpressionResolver, get_field
from .base import TransformRegistry

logger = logging.getLogger(__name__)


class TransformPipeline:
    """Applies transform definitions using a transformer registry and resolver."""

    def __init__(self, registry: TransformRegistry, resolver: ExpressionResolver):
        self.registry = registry
        self.resolver = resolver

    def execute_pre_transforms(self, step: StepDefinition, context: ExecutionContext):
        """
        Run the step's context transforms in order.

        Raises:
            TransformError: On the first failing transform
        """
        if not step.context_transforms:
            return

        logger.debug(
            f"Executing {len(step.context_transforms)} pre-transforms for step '{step.name}'"
        )
        step_results = context.step_results_snapshot()
        self._run_all(step.context_transforms, "pre", step, step_results, context)

    def execute_post_transforms(
        self, step: StepDefinition, result: StepResult, context: ExecutionContext
    ):
        """
        Run the step's post transforms in order.

        The step's own result is visible under its name while they run.

        Raises:
            TransformError: On the first failing transform
        """
        if not step.post_transforms:
            return

        logger.debug(
            f"Executing {len(step.post_transforms)} post-transforms for step '{step.name}'"
        )
        step_results = context.step_results_snapshot()
        step_results[step.name] = result
        self._run_all(step.post_transforms, "post", step, step_results, context)

    def _run_all(
        self,
        transforms: Sequence[TransformDefinition],
        phase: str,
        step: StepDefinition,
        step_results: Dict[str, StepResult],
        context: ExecutionContext,
    ):
        for index, transform in enumerate(transforms):
            transform_id = f"{step.name}_{phase}_{index}"
            try:
                self.execute_transform(transform, step_results, context, transform_id)
            except TransformError as e:
                raise TransformError(f"{phase}-transform {index} failed: {e}") from e

    def execute_transform(
        self,
        transform: TransformDefinition,
        step_results: Mapping,
        context: ExecutionContext,
        transform_id: Optional[str] = None,
    ) -> Any:
        """
        Run one transform and store its result.

        Returns:
            The transform result, or None when its condition was not met
        """
        transform_id = transform_id or transform.name or transform.transform
        logger.debug(
            f"Executing transform {transform_id}: {transform.transform} "
            f"(source={transform.source}, store_as={transform.store_as})"
        )

        if transform.condition:
            rendered = self.resolver.render(
                "{" + transform.condition + "}", context, step_results
            )
            if not is_truthy(rendered):
                logger.debug(
                    f"Transform {transform_id} skipped, condition not met: {transform.condition}"
                )
                return None

        source_data = self.resolve_source(transform.source, step_results, context)

        transformer = self.registry.get(transform.transform)
        if transformer is None:
            raise TransformError(f"transformer '{transform.transform}' not found")

        params = dict(transform.params)
        error = transformer.validate_params(params)
        if error:
            raise TransformError(
                f"invalid parameters for transformer '{transform.transform}': {error}"
            )

        try:
            result = transformer.transform(source_data, params)
        except TransformError as e:
            raise TransformError(f"transformation '{transform.transform}' failed: {e}") from e
        except Exception as e:
            raise TransformError(
                f"transformation '{transform.transform}' failed: {type(e).__name__}: {e}"
            ) from e

        if transform.store_as:
            context.set_data(transform.store_as, result)
            logger.debug(
                f"Transform {transform_id} stored {type(result).__name__} as '{transform.store_as}'"
            )
        return result

    def resolve_source(
        self, source: str, step_results: Mapping, context: ExecutionContext
    ) -> Any:
        """
        Resolve a transform source to a raw value.

        Tries the expression resolver, then ``step.field`` on a successful
        step result, then the data bag.

        Raises:
            TransformError: If the source cannot be found
        """
        try:
            return self.resolver.resolve(source, context, step_results)
        except ExpressionError as e:
            logger.debug(f"Source '{source}' did not resolve as an expression: {e}")

        step_name, _, field = source.partition(".")
        if field:
            result = step_results.get(step_name)
            if result is not None and result.success:
                return self._field_value(source, result.output, field)

        if context.has_data(source):
            return context.get_data(source)

        raise TransformError(f"failed to resolve source '{source}': source '{source}' not found")

    @staticmethod
    def _field_value(source: str, output: Any, field: str) -> Any:
        if isinstance(output, Mapping):
            if field in output:
                return output[field]
            raise TransformError(f"failed to resolve source '{source}': field '{field}' not found in map")
        try:
            return get_field(output, field)
        except ExpressionError as e:
            raise TransformError(f"failed to resolve source '{source}': {e}")
