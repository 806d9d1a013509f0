"""
Cache invalidation for data services.

Reads are cached by the broker under keys scoped to the service name;
every successful write broadcasts ``cache.clean`` with ``"<name>.*"`` so
all cached reads of that service are discarded at once.
"""

import logging
from typing import TYPE_CHECKING

from ..constants import CACHE_CLEAN_EVENT

if TYPE_CHECKING:
    from .db_service import DbService

logger = logging.getLogger(__name__)


class CacheCoordinator:
    """Broadcasts namespace-wide invalidation on behalf of one service."""

    def __init__(self, service: "DbService") -> None:
        self._service = service

    @property
    def namespace(self) -> str:
        return f"{self._service.name}.*"

    async def clear_cache(self) -> None:
        """
        Emit ``cache.clean`` for this service's namespace.

        Completes once local subscribers (the broker's cacher) have run.
        A service running without a broker has no cache to clean.
        """
        broker = self._service.broker
        if broker is None:
            logger.debug(f"No broker attached to '{self._service.name}'; skipping cache clean")
            return
        await broker.emit(CACHE_CLEAN_EVENT, self.namespace)
