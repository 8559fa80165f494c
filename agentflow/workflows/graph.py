"""
Dependency Graph

Group workflow steps into execution levels using Kahn-style layering.
"""

import logging
from typing import Dict, List, Sequence

from .definition import StepDefinition
from .errors import CircularDependencyError

logger = logging.getLogger(__name__)


def build_dependency_graph(steps: Sequence[StepDefinition]) -> List[List[StepDefinition]]:
    """
    Build ordered execution levels from step dependencies.

    Every step appears in exactly one level, strictly after the levels of all
    of its dependencies. Steps inside a level keep their definition order and
    may run concurrently.

    Args:
        steps: Step definitions with unique names

    Returns:
        List of levels, each a list of steps

    Raises:
        CircularDependencyError: If some steps can never become ready. This
            covers cycles, self-dependencies and dependencies on unknown steps.
    """
    in_degree: Dict[str, int] = {step.name: len(step.depends_on) for step in steps}
    remaining: List[StepDefinition] = list(steps)
    levels: List[List[StepDefinition]] = []

    while remaining:
        current_level = [step for step in remaining if in_degree[step.name] == 0]

        if not current_level:
            names = [step.name for step in remaining]
            logger.error(f"Circular dependency detected among steps: {names}")
            raise CircularDependencyError(names)

        ready = {step.name for step in current_level}
        remaining = [step for step in remaining if step.name not in ready]

        # One decrement per matching entry, so duplicated dependencies still resolve
        for other in remaining:
            for dep in other.depends_on:
                if dep in ready:
                    in_degree[other.name] -= 1

        levels.append(current_level)

    logger.debug(
        f"Dependency graph has {len(levels)} levels: "
        f"{[[step.name for step in level] for level in levels]}"
    )
    return levels
