"""
MongoDB utility functions for MDB_CRUD.

Helpers for turning driver documents into JSON-safe values and for
normalizing document identifiers supplied by callers.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from bson import ObjectId


def clean_mongo_value(value: Any) -> Any:
    """
    Convert a single BSON value to a JSON-serializable one.

    - ObjectId -> str
    - datetime -> ISO format string
    - mappings and lists are converted recursively
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return clean_mongo_doc(value)
    if isinstance(value, (list, tuple)):
        return [clean_mongo_value(item) for item in value]
    return value


def clean_mongo_doc(doc: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """
    Convert a MongoDB document to a JSON-serializable dict.

    Args:
        doc: MongoDB document or None

    Returns:
        Cleaned copy of the document, or None if input was None

    Example:
        ```python
        cleaned = clean_mongo_doc({"_id": ObjectId("507f1f77bcf86cd799439011"), "n": 1})
        # {"_id": "507f1f77bcf86cd799439011", "n": 1}
        ```
    """
    if doc is None:
        return None
    return {key: clean_mongo_value(value) for key, value in doc.items()}


def to_update_document(patch: Any) -> Any:
    """
    Wrap a plain field patch in ``$set``.

    Patches that already use update operators (``{"$inc": {...}}``) are
    passed through unchanged, as is anything that is not a mapping, so
    the driver reports malformed updates itself. An empty patch stays
    empty: it changes nothing.
    """
    if not isinstance(patch, Mapping):
        return patch
    if not patch:
        return {}
    if any(str(key).startswith("$") for key in patch):
        return dict(patch)
    return {"$set": dict(patch)}


def coerce_object_id(value: Any) -> Any:
    """
    Turn a 24-hex identifier string into an ObjectId.

    Anything else (ObjectId instances, ints, custom string keys) is
    returned unchanged so collections with non-ObjectId `_id` values keep working.
    """
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value
