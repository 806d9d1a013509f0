"""
Utility functions and helpers for MDB_CRUD.
"""

from .mongo import (clean_mongo_doc, clean_mongo_value, coerce_object_id,
                    to_update_document)

__all__ = ["clean_mongo_doc", "clean_mongo_value", "coerce_object_id", "to_update_document"]
