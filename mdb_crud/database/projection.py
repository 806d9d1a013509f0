"""
Projection of storage documents into plain result objects.

Driver results are tagged with :class:`DriverDocument` by the caller so the
projection never has to guess whether a value still holds BSON types.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

from ..utils.mongo import clean_mongo_doc

PropertyFilter = tuple[str, ...]


@dataclass(frozen=True)
class DriverDocument:
    """A document exactly as the driver returned it (ObjectId, datetime, ...)."""

    data: Mapping[str, Any]

    @classmethod
    def wrap(cls, doc: Mapping[str, Any] | None) -> "DriverDocument | None":
        return None if doc is None else cls(doc)

    @classmethod
    def wrap_many(cls, docs: Sequence[Mapping[str, Any]]) -> list["DriverDocument"]:
        return [cls(doc) for doc in docs]


Projectable = Union[DriverDocument, Mapping[str, Any]]


def parse_property_filter(value: str | Sequence[str] | None) -> PropertyFilter | None:
    """
    Normalize a property filter.

    Accepts a space-separated string or a list/tuple of names.
    None or an empty filter means "keep every property".
    """
    if value is None:
        return None
    names = value.split() if isinstance(value, str) else [str(name) for name in value]
    return tuple(names) or None


def _pick_path(source: Mapping[str, Any], path: str, target: dict[str, Any]) -> None:
    parts = path.split(".")
    node: Any = source
    for part in parts:
        if not isinstance(node, Mapping) or part not in node:
            return
        node = node[part]

    cursor = target
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = node


def pick(doc: Mapping[str, Any], properties: PropertyFilter) -> dict[str, Any]:
    """
    Keep only `properties` of `doc`; dotted names select nested values.

    Names that do not exist in the document are simply left out.
    """
    picked: dict[str, Any] = {}
    for path in properties:
        _pick_path(doc, path, picked)
    return picked


def project_document(doc: Projectable, properties: PropertyFilter | None = None) -> dict[str, Any]:
    """Project a single document to a plain dict."""
    if isinstance(doc, DriverDocument):
        plain = clean_mongo_doc(doc.data)
    else:
        plain = dict(doc)
    if properties is None:
        return plain
    return pick(plain, properties)


def to_json(
    docs: Projectable | Sequence[Projectable] | None,
    property_filter: str | Sequence[str] | None = None,
) -> dict[str, Any] | list[dict[str, Any]] | None:
    """
    Convert document(s) to plain JSON-safe objects.

    Args:
        docs: One document, a list of documents, or None (not found)
        property_filter: Space-separated string or list of property names

    Returns:
        A dict, a list of dicts in the same order, or None
    """
    if docs is None:
        return None
    properties = parse_property_filter(property_filter)
    if isinstance(docs, (DriverDocument, Mapping)):
        return project_document(docs, properties)
    return [project_document(doc, properties) for doc in docs]
