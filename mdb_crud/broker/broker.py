"""
Service broker.

A small in-process host for data services: it registers services, runs
their ``started``/``stopped`` lifecycle, dispatches ``"<service>.<action>"``
calls (serving cacheable actions from the cacher), and owns the event bus
services broadcast on.

Usage:
    broker = ServiceBroker(cacher=MemoryCacher())
    broker.create_service(CollectionSchema(name="posts", collection="posts",
                                           settings={"db": "mongodb://localhost/blog"}))
    await broker.start()
    posts = await broker.call("posts.list", {"limit": 10, "sort": "-created"})
    await broker.stop()
"""

import inspect
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from ..exceptions import ActionNotFoundError, ConfigurationError, ServiceNotFoundError
from ..observability import (
    get_logger,
    record_operation,
    reset_action_context,
    reset_correlation_id,
    set_action_context,
    set_correlation_id,
)
from .actions import ActionSpec, collect_actions
from .cacher import MemoryCacher
from .events import EventBus

if TYPE_CHECKING:
    from ..service import CollectionSchema, DbService

logger = logging.getLogger(__name__)
contextual_logger = get_logger(__name__)


@dataclass(frozen=True)
class Context:
    """
    One action invocation.

    ``params`` is a read-only view; handlers must not try to change the
    request they were given.
    """

    broker: "ServiceBroker | None"
    service: str
    action: str
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    meta: Mapping[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def action_name(self) -> str:
        return f"{self.service}.{self.action}"

    @classmethod
    def create(
        cls,
        broker: "ServiceBroker | None",
        service: str,
        action: str,
        params: Mapping[str, Any] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> "Context":
        return cls(
            broker=broker,
            service=service,
            action=action,
            params=MappingProxyType(dict(params or {})),
            meta=dict(meta or {}),
        )


class ServiceBroker:
    """
    Registers services and dispatches calls to their actions.
    """

    def __init__(self, cacher: MemoryCacher | None = None, bus: EventBus | None = None):
        """
        Initialize the broker.

        Args:
            cacher: Optional result cache for actions declaring cache keys
            bus: Event bus (a new one is created if omitted)
        """
        self.bus = bus or EventBus()
        self.cacher = cacher
        if cacher is not None:
            cacher.attach(self.bus)
        self._services: dict[str, Any] = {}
        self._actions: dict[str, dict[str, tuple[ActionSpec, Callable]]] = {}
        self._started = False

    @property
    def services(self) -> dict[str, Any]:
        return dict(self._services)

    def register(self, service: Any) -> Any:
        """
        Register a service instance (anything with a ``name`` and actions).

        Raises:
            ConfigurationError: If a service with the same name is registered
        """
        name = service.name
        if name in self._services:
            raise ConfigurationError(
                f"Service '{name}' is already registered", config_key="name", config_value=name
            )
        service.broker = self
        self._services[name] = service
        self._actions[name] = collect_actions(service)
        logger.debug(f"Registered service '{name}' with actions {sorted(self._actions[name])}")
        return service

    def create_service(self, schema: "CollectionSchema", **kwargs: Any) -> "DbService":
        """Build a DbService from a collection schema and register it."""
        from ..service import DbService

        return self.register(DbService(schema, **kwargs))

    def get_service(self, name: str) -> Any:
        try:
            return self._services[name]
        except KeyError:
            raise ServiceNotFoundError(name) from None

    async def start(self) -> None:
        """Run ``started()`` on every registered service, in registration order."""
        for service in self._services.values():
            await _run_hook(service, "started")
        self._started = True
        logger.info(f"Broker started with {len(self._services)} service(s)")

    async def stop(self) -> None:
        """Run ``stopped()`` on every registered service, in reverse order."""
        for service in reversed(list(self._services.values())):
            await _run_hook(service, "stopped")
        self._started = False
        logger.info("Broker stopped")

    def on(self, event: str, handler: Callable[[Any], Any]) -> None:
        self.bus.on(event, handler)

    async def emit(self, event: str, payload: Any = None) -> int:
        """Broadcast an event to local subscribers and wait for them."""
        return await self.bus.emit(event, payload)

    async def call(
        self,
        action_name: str,
        params: Mapping[str, Any] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Call ``"<service>.<action>"``.

        Cacheable actions are answered from the cacher when an entry exists
        for the same cache-key values; otherwise the handler runs and its
        result is stored.

        Raises:
            ServiceNotFoundError: Unknown service
            ActionNotFoundError: Unknown action on a known service
        """
        service_name, _, name = action_name.rpartition(".")
        if service_name not in self._actions:
            raise ServiceNotFoundError(service_name or action_name)
        try:
            spec, handler = self._actions[service_name][name]
        except KeyError:
            raise ActionNotFoundError(service_name, name) from None

        ctx = Context.create(self, service_name, name, params, meta)
        correlation_token = set_correlation_id(ctx.request_id)
        context_token = set_action_context(service_name, name)
        start_time = time.time()
        success = False
        cached = False

        try:
            if self.cacher is not None and spec.cacheable:
                key = self.cacher.get_cache_key(action_name, ctx.params, spec.cache_keys)
                result = await self.cacher.get(key)
                if result is not None:
                    cached = True
                else:
                    generation = self.cacher.generation
                    result = await handler(ctx)
                    await self.cacher.set(key, result, generation=generation)
            else:
                result = await handler(ctx)
            success = True
            return result
        finally:
            duration_ms = (time.time() - start_time) * 1000
            record_operation(action_name, duration_ms, success=success, cached=cached)
            contextual_logger.debug(
                f"Call '{action_name}' finished",
                extra={
                    "success": success,
                    "cached": cached,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            reset_action_context(context_token)
            reset_correlation_id(correlation_token)


async def _run_hook(service: Any, hook_name: str) -> None:
    hook = getattr(service, hook_name, None)
    if hook is None:
        return
    result = hook()
    if inspect.isawaitable(result):
        await result
