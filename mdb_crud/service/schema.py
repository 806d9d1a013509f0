"""
Collection configuration of a data service.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..config import ServiceSettings

if TYPE_CHECKING:
    from ..broker import Context
    from .db_service import DbService


@dataclass
class CollectionSchema:
    """
    Everything needed to build a DbService.

    Attributes:
        name: Service name; also the cache namespace (``"<name>.*"``)
        collection: Collection name resolved against the connection's default
                    database, or a ready Motor collection object
        settings: ServiceSettings or its camelCase mapping form
        after_connected: Hook called with the service once per successful open
                         (sync or async), e.g. to create indexes
        populate: Hook ``(ctx, docs) -> docs`` attaching related entities
                  (sync or async); identity when omitted
    """

    name: str
    collection: Any
    settings: ServiceSettings | Mapping[str, Any] | None = None
    after_connected: "Callable[[DbService], Any] | None" = None
    populate: "Callable[[Context, Any], Any] | None" = None
