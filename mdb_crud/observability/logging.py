"""
Contextual logging utilities for MDB_CRUD.

Every broker call runs with a correlation ID and a service/action context
stored in context variables; loggers obtained through :func:`get_logger`
attach that context to each record they emit.
"""

import contextvars
import logging
import uuid
from typing import Any

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

_action_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "action_context", default=None
)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> contextvars.Token:
    """
    Set a correlation ID in the current context.

    Args:
        correlation_id: Optional correlation ID (generates new one if None)

    Returns:
        Token that restores the previous value when passed to reset_correlation_id
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    """Restore the correlation ID that was active before set_correlation_id."""
    _correlation_id.reset(token)


def set_action_context(
    service: str | None = None, action: str | None = None, **kwargs: Any
) -> contextvars.Token:
    """
    Set service/action context for logging.

    Args:
        service: Service name
        action: Action name
        **kwargs: Additional context

    Returns:
        Token for reset_action_context
    """
    return _action_context.set({"service": service, "action": action, **kwargs})


def reset_action_context(token: contextvars.Token) -> None:
    """Restore the previous service/action context."""
    _action_context.reset(token)


def get_logging_context() -> dict[str, Any]:
    """Get current logging context (correlation ID and action context)."""
    context: dict[str, Any] = {}

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    action_context = _action_context.get()
    if action_context:
        context.update({k: v for k, v in action_context.items() if v is not None})

    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that automatically adds context to log records.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Add context to log records."""
        context = get_logging_context()

        extra = kwargs.get("extra", {})
        if extra:
            context.update(extra)

        kwargs["extra"] = context
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger that automatically adds correlation ID and context.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextualLoggerAdapter(logging.getLogger(name), {})
