"""
MDB_CRUD - MongoDB CRUD data services

Generic list/count/create/get/update/remove/drop actions over a MongoDB
collection, with cached reads, namespace-wide cache invalidation and a
self-healing connection.
"""

# Service runtime
from .broker import Context, EventBus, MemoryCacher, ServiceBroker, action
# Configuration
from .config import ConnectionTarget, ServiceSettings
# Database layer
from .database import (ConnectionManager, ConnectionState, DriverDocument,
                       apply_filters, to_json)
# Exceptions
from .exceptions import (ActionNotFoundError, ConfigurationError,
                         MdbCrudError, ServiceNotFoundError)
# Data service
from .service import CollectionSchema, DbService

__version__ = "0.1.0"

__all__ = [
    # Service
    "DbService",
    "CollectionSchema",
    # Runtime
    "ServiceBroker",
    "Context",
    "EventBus",
    "MemoryCacher",
    "action",
    # Config
    "ServiceSettings",
    "ConnectionTarget",
    # Database
    "ConnectionManager",
    "ConnectionState",
    "DriverDocument",
    "apply_filters",
    "to_json",
    # Exceptions
    "MdbCrudError",
    "ConfigurationError",
    "ServiceNotFoundError",
    "ActionNotFoundError",
]
