"""
Observability components.

Provides contextual logging and per-action metrics collection.
"""

from .logging import (
    ContextualLoggerAdapter,
    get_correlation_id,
    get_logger,
    get_logging_context,
    reset_action_context,
    reset_correlation_id,
    set_action_context,
    set_correlation_id,
)
from .metrics import (
    MetricsCollector,
    OperationMetrics,
    get_metrics_collector,
    record_operation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "OperationMetrics",
    "get_metrics_collector",
    "record_operation",
    # Logging
    "get_correlation_id",
    "set_correlation_id",
    "reset_correlation_id",
    "set_action_context",
    "reset_action_context",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
]
