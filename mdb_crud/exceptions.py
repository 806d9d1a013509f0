"""
Custom exceptions for MDB_CRUD.

Driver errors (``pymongo.errors``) are never wrapped by the CRUD actions;
these types cover configuration and host-runtime failures only.
"""

from typing import Any, Dict, Optional


class MdbCrudError(RuntimeError):
    """
    Base exception for MDB_CRUD errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (service,
                 action, config_key, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ConfigurationError(MdbCrudError):
    """
    Raised when configuration is invalid or missing.

    This is the only fatal error class of a data service: it aborts
    construction (missing collection) or start (bad connection target).

    Attributes:
        message: Error message
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value


class ServiceNotFoundError(MdbCrudError):
    """Raised by the broker when a call targets an unregistered service."""

    def __init__(self, service_name: str, context: Optional[Dict[str, Any]] = None) -> None:
        context = context or {}
        context["service"] = service_name
        super().__init__(f"Service '{service_name}' is not registered", context=context)
        self.service_name = service_name


class ActionNotFoundError(MdbCrudError):
    """Raised by the broker when a service has no action with the requested name."""

    def __init__(
        self,
        service_name: str,
        action_name: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        context["service"] = service_name
        context["action"] = action_name
        super().__init__(
            f"Action '{action_name}' is not defined on service '{service_name}'",
            context=context,
        )
        self.service_name = service_name
        self.action_name = action_name
