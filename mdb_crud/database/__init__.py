"""
Storage-facing layer of a data service.

Connection lifecycle, the `list` filter pipeline, and document projection.
"""

from .connection import (
    Connection,
    ConnectionCell,
    ConnectionEventListener,
    ConnectionManager,
    ConnectionState,
    is_timeout_error,
)
from .filters import apply_filters, parse_sort_spec, translate_sort
from .projection import DriverDocument, parse_property_filter, pick, to_json

__all__ = [
    # Connection
    "Connection",
    "ConnectionCell",
    "ConnectionEventListener",
    "ConnectionManager",
    "ConnectionState",
    "is_timeout_error",
    # Filters
    "apply_filters",
    "parse_sort_spec",
    "translate_sort",
    # Projection
    "DriverDocument",
    "parse_property_filter",
    "pick",
    "to_json",
]
