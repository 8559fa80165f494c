"""
Execution State

Shared per-run state for workflow execution: step results, the free-form
data bag, and aggregated metrics.
"""

import threading
import uuid
from copy import copy
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from dataclasses import dataclass, field


@dataclass
class StepResult:
    """Result of a step execution."""

    step_name: str
    success: bool = False
    output: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return bool(self.metadata.get("skipped"))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "step_name": self.step_name,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "execution_time": self.execution_time,
            "metadata": dict(self.metadata),
        }


@dataclass
class ExecutionMetrics:
    """Counters aggregated over a workflow run."""

    total_steps: int = 0
    successful_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    llm_tokens_used: int = 0
    llm_cost: float = 0.0
    total_execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_steps": self.total_steps,
            "successful_steps": self.successful_steps,
            "failed_steps": self.failed_steps,
            "skipped_steps": self.skipped_steps,
            "llm_tokens_used": self.llm_tokens_used,
            "llm_cost": self.llm_cost,
            "total_execution_time": self.total_execution_time,
        }


class ExecutionContext:
    """
    Workflow execution context.

    One context is created per workflow run and shared by reference between
    all concurrently executing steps. Every read and write of the data bag,
    the step results and the metrics goes through a single re-entrant lock,
    since tool steps may run in worker threads.
    """

    def __init__(
        self,
        data: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        *,
        step_results: Optional[Dict[str, StepResult]] = None,
        metrics: Optional[ExecutionMetrics] = None,
        lock: Optional[threading.RLock] = None,
    ):
        """
        Initialize execution context.

        Args:
            data: Initial contents of the data bag (workflow inputs)
            session_id: Identifier of this run
            step_results: Shared step results map (used by derived contexts)
            metrics: Shared metrics (used by derived contexts)
            lock: Shared lock (used by derived contexts)
        """
        self._lock = lock or threading.RLock()
        self.data: Dict[str, Any] = dict(data or {})
        self.step_results: Dict[str, StepResult] = (
            step_results if step_results is not None else {}
        )
        self.metrics = metrics or ExecutionMetrics()
        self.session_id = session_id or str(uuid.uuid4())
        self.started_at = datetime.now(timezone.utc)

    # Data bag

    def get_data(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self.data.get(name, default)

    def has_data(self, name: str) -> bool:
        with self._lock:
            return name in self.data

    def set_data(self, name: str, value: Any):
        with self._lock:
            self.data[name] = value

    def data_snapshot(self) -> Dict[str, Any]:
        """Return a shallow copy of the data bag."""
        with self._lock:
            return dict(self.data)

    # Step results

    def get_step_result(self, name: str) -> Optional[StepResult]:
        with self._lock:
            return self.step_results.get(name)

    def set_step_result(self, name: str, result: StepResult):
        with self._lock:
            self.step_results[name] = result

    def step_results_snapshot(self) -> Dict[str, StepResult]:
        """Return a shallow copy of the step results map."""
        with self._lock:
            return dict(self.step_results)

    # Metrics

    def record_llm_usage(self, tokens_used: int, cost: float):
        """Accumulate LLM token usage and cost."""
        with self._lock:
            self.metrics.llm_tokens_used += tokens_used
            self.metrics.llm_cost += cost

    def update_metrics(self, **values: Any):
        """Set metric counters by name."""
        with self._lock:
            for name, value in values.items():
                if not hasattr(self.metrics, name):
                    raise AttributeError(f"unknown metric: {name}")
                setattr(self.metrics, name, value)

    def metrics_snapshot(self) -> ExecutionMetrics:
        with self._lock:
            return copy(self.metrics)

    def derive(self, extra_data: Optional[Dict[str, Any]] = None) -> "ExecutionContext":
        """
        Create a child context for a loop iteration.

        The child gets a copy of the data bag (plus ``extra_data``) and shares
        the step results, metrics and lock with this context.

        Args:
            extra_data: Values added on top of the copied data

        Returns:
            Derived ExecutionContext
        """
        data = self.data_snapshot()
        data.update(extra_data or {})
        child = ExecutionContext(
            data,
            self.session_id,
            step_results=self.step_results,
            metrics=self.metrics,
            lock=self._lock,
        )
        child.started_at = self.started_at
        return child

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        with self._lock:
            return {
                "session_id": self.session_id,
                "started_at": self.started_at.isoformat(),
                "data": dict(self.data),
                "step_results": {
                    name: result.to_dict() for name, result in self.step_results.items()
                },
                "metrics": self.metrics.to_dict(),
            }
