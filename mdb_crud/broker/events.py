"""
In-process event bus shared by the services of one broker.
"""

import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class EventBus:
    """
    Minimal publish/subscribe bus.

    Handlers may be plain functions or coroutines; ``emit`` awaits them in
    subscription order, so a caller that awaits ``emit`` knows every local
    subscriber has finished.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[[Any], Any]]] = defaultdict(list)

    def on(self, event: str, handler: Callable[[Any], Any]) -> None:
        """Subscribe `handler` to `event`."""
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable[[Any], Any]) -> None:
        """Unsubscribe `handler` from `event` if present."""
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: str, payload: Any = None) -> int:
        """
        Deliver `payload` to every subscriber of `event`.

        A failing subscriber is logged and does not stop delivery to the others.

        Returns:
            Number of handlers that completed successfully
        """
        delivered = 0
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for event '{event}' failed: {e}", exc_info=True)
        return delivered
