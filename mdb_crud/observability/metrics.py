"""
Metrics collection for MDB_CRUD.

Records per-action timings and error counts so a host can see how each
data service behaves (e.g. ``posts.list``, ``posts.update``, ``connection.connect``).
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class OperationMetrics:
    """Metrics for a single operation."""

    operation_name: str
    count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float("inf")
    max_duration_ms: float = 0.0
    error_count: int = 0
    cache_hits: int = 0
    last_execution: datetime | None = None

    @property
    def avg_duration_ms(self) -> float:
        """Calculate average duration in milliseconds."""
        return self.total_duration_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float, success: bool = True, cached: bool = False) -> None:
        """Record a single operation execution."""
        self.count += 1
        self.total_duration_ms += duration_ms
        self.min_duration_ms = min(self.min_duration_ms, duration_ms)
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if not success:
            self.error_count += 1
        if cached:
            self.cache_hits += 1
        self.last_execution = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "operation": self.operation_name,
            "count": self.count,
            "avg_duration_ms": round(self.avg_duration_ms, 2),
            "min_duration_ms": (
                round(self.min_duration_ms, 2) if self.min_duration_ms != float("inf") else 0.0
            ),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "error_count": self.error_count,
            "cache_hits": self.cache_hits,
            "last_execution": (self.last_execution.isoformat() if self.last_execution else None),
        }


class MetricsCollector:
    """
    Bounded, thread-safe metrics store.

    PyMongo monitor threads and the event loop may both record, so all
    access goes through a threading lock. Oldest operations are evicted
    first once ``max_metrics`` is reached.
    """

    def __init__(self, max_metrics: int = 10000):
        self._metrics: OrderedDict[str, OperationMetrics] = OrderedDict()
        self._lock = threading.Lock()
        self._max_metrics = max_metrics

    def record_operation(
        self,
        operation_name: str,
        duration_ms: float,
        success: bool = True,
        cached: bool = False,
    ) -> None:
        """
        Record an operation execution.

        Args:
            operation_name: Name of the operation (e.g., "posts.list")
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            cached: Whether the result was served from the cache
        """
        with self._lock:
            is_new = operation_name not in self._metrics

            if is_new and len(self._metrics) >= self._max_metrics:
                self._metrics.popitem(last=False)

            if is_new:
                self._metrics[operation_name] = OperationMetrics(operation_name=operation_name)
            else:
                self._metrics.move_to_end(operation_name)

            self._metrics[operation_name].record(duration_ms, success, cached)

    def get_metrics(self, operation_name: str | None = None) -> dict[str, Any]:
        """
        Get metrics for operations.

        Args:
            operation_name: Optional operation name prefix to filter by

        Returns:
            Dictionary of metrics
        """
        with self._lock:
            metrics = {
                k: v.to_dict()
                for k, v in self._metrics.items()
                if operation_name is None or k.startswith(operation_name)
            }
            total_operations = len(self._metrics)

        return {
            "timestamp": datetime.now().isoformat(),
            "metrics": metrics,
            "total_operations": total_operations,
        }

    def get_operation_count(self, operation_name: str) -> int:
        """Get the count of executions for an operation."""
        with self._lock:
            metric = self._metrics.get(operation_name)
            return metric.count if metric else 0

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._metrics.clear()


_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def record_operation(
    operation_name: str, duration_ms: float, success: bool = True, cached: bool = False
) -> None:
    """Record an operation in the global metrics collector."""
    get_metrics_collector().record_operation(operation_name, duration_ms, success, cached)
