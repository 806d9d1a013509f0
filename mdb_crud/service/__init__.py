"""
Data service: CRUD actions, cache invalidation and collection configuration.
"""

from .cache import CacheCoordinator
from .db_service import DbService
from .schema import CollectionSchema

__all__ = ["CacheCoordinator", "CollectionSchema", "DbService"]
