"""
Filter pipeline for `list` queries.

Turns the generic request parameters (``limit``, ``offset``, ``sort``,
``search``) into cursor modifiers. Parameters that are missing, of the
wrong type, or out of range are skipped; the pipeline never raises on
bad input and degrades to a less filtered query instead.
"""

import logging
from collections.abc import Mapping
from typing import Any

from pymongo import ASCENDING, DESCENDING

from ..constants import SORT_ASCENDING_PREFIX, SORT_DESCENDING_PREFIX

logger = logging.getLogger(__name__)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def translate_sort(sort: str) -> str:
    """
    Translate a comma-separated sort list into a space-separated one.

    Only the first comma is converted: ``"name,-age"`` becomes
    ``"name -age"`` but ``"a,b,c"`` becomes ``"a b,c"``.
    """
    return sort.replace(",", " ", 1)


def parse_sort_spec(spec: str) -> list[tuple[str, int]]:
    """
    Parse a space-separated sort spec into PyMongo sort pairs.

    ``"-created title"`` -> ``[("created", DESCENDING), ("title", ASCENDING)]``
    """
    pairs: list[tuple[str, int]] = []
    for token in spec.split():
        if token.startswith(SORT_DESCENDING_PREFIX):
            field, direction = token[1:], DESCENDING
        elif token.startswith(SORT_ASCENDING_PREFIX):
            field, direction = token[1:], ASCENDING
        else:
            field, direction = token, ASCENDING
        if field:
            pairs.append((field, direction))
    return pairs


def apply_filters(cursor: Any, params: Mapping[str, Any] | None, max_limit: int | None = None):
    """
    Apply limit/offset/sort to a Motor cursor.

    Args:
        cursor: Cursor returned by ``collection.find(...)``
        params: Request parameters
        max_limit: Optional cap on the number of returned documents;
                   also applied when no limit is requested

    Returns:
        The same cursor, modified in place
    """
    params = params or {}

    limit = params.get("limit")
    if _is_count(limit):
        if max_limit is not None and limit > max_limit:
            logger.warning(f"Result limit {limit} exceeds maximum {max_limit}. Capping.")
            limit = max_limit
        cursor.limit(limit)
    elif max_limit is not None:
        cursor.limit(max_limit)

    offset = params.get("offset")
    if _is_count(offset):
        cursor.skip(offset)

    sort = params.get("sort")
    if isinstance(sort, str):
        pairs = parse_sort_spec(translate_sort(sort))
        if pairs:
            cursor.sort(pairs)

    # TODO: apply `search` against the `searchFields` setting once text indexes are managed
    if params.get("search") is not None:
        logger.debug("Ignoring `search` parameter: text search is not implemented")

    return cursor
