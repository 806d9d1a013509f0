"""
Generic CRUD data service over one MongoDB collection.

Each action is a straight pipeline: query -> driver call -> projection ->
populate hook -> cache clean (writes only) -> result. Driver errors are
not caught here; they reach the caller unchanged.

Example:
    broker = ServiceBroker(cacher=MemoryCacher())
    broker.create_service(CollectionSchema(
        name="posts",
        collection="posts",
        settings={"db": "mongodb://localhost:27017/blog", "propertyFilter": "_id title"},
    ))
    await broker.start()
    post = await broker.call("posts.create", {"entity": {"title": "Hello"}})
    await broker.call("posts.update", {"id": post["_id"], "update": {"title": "Hi"}})
"""

from __future__ import annotations

import inspect
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from pymongo import ReturnDocument

from ..broker import Context, action
from ..config import ServiceSettings
from ..constants import (
    ACTION_COUNT,
    ACTION_CREATE,
    ACTION_DROP,
    ACTION_GET,
    ACTION_LIST,
    ACTION_REMOVE,
    ACTION_UPDATE,
    COUNT_CACHE_KEYS,
    GET_CACHE_KEYS,
    LIST_CACHE_KEYS,
    RECONNECT_DELAY_SECONDS,
)
from ..database import ConnectionManager, DriverDocument, apply_filters, to_json
from ..exceptions import ConfigurationError
from ..observability import get_logger
from ..utils.mongo import coerce_object_id, to_update_document
from .cache import CacheCoordinator
from .schema import CollectionSchema

if TYPE_CHECKING:
    from ..broker import ServiceBroker

contextual_logger = get_logger(__name__)


class DbService:
    """
    CRUD actions (list, count, create, get, update, remove, drop) for one collection.

    The service owns its ConnectionManager: ``started()`` connects and
    watches the connection, ``stopped()`` closes it.
    """

    def __init__(
        self,
        schema: CollectionSchema,
        broker: ServiceBroker | None = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        """
        Initialize the service.

        Args:
            schema: Collection configuration
            broker: Owning broker (set automatically on registration)
            reconnect_delay: Seconds before reconnecting after a connection timeout

        Raises:
            ConfigurationError: If the collection is missing or settings are invalid
        """
        if schema.collection is None or schema.collection == "":
            raise ConfigurationError(
                "Missing `collection` definition!",
                config_key="collection",
                context={"service": schema.name},
            )

        self.schema = schema
        self.name = schema.name
        if isinstance(schema.settings, ServiceSettings):
            self.settings = schema.settings
        else:
            self.settings = ServiceSettings.from_dict(schema.settings)
        self.settings.validate()

        self.broker = broker
        self.reconnect_delay = reconnect_delay
        self.cache = CacheCoordinator(self)
        self.connection_manager: ConnectionManager | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def started(self) -> None:
        """Connect to MongoDB and attach the connection observers."""
        target = self.settings.connection_target()
        self.connection_manager = ConnectionManager(target, reconnect_delay=self.reconnect_delay)
        self.connection_manager.start(after_connected=self._after_connected)

    async def stopped(self) -> None:
        """Close the connection (best-effort)."""
        if self.connection_manager is not None:
            self.connection_manager.stop()

    def _after_connected(self) -> Any:
        if self.schema.after_connected is None:
            return None
        return self.schema.after_connected(self)

    @property
    def collection(self) -> Any:
        """
        The collection handle actions run against.

        Collection names are resolved on every access so a reconnect
        is picked up without rebinding.
        """
        if not isinstance(self.schema.collection, str):
            return self.schema.collection
        if self.connection_manager is None:
            raise RuntimeError(f"Service '{self.name}' is not started. Call started() first.")
        return self.connection_manager.database[self.schema.collection]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    @action(name=ACTION_LIST, cache_keys=LIST_CACHE_KEYS)
    async def list(self, ctx: Context) -> list[dict[str, Any]]:
        """Find documents, bounded and ordered by limit/offset/sort."""
        cursor = self.collection.find({})
        apply_filters(cursor, ctx.params, max_limit=self.settings.max_limit)
        docs = await cursor.to_list(length=None)
        return self.to_json(DriverDocument.wrap_many(docs))

    @action(name=ACTION_COUNT, cache_keys=COUNT_CACHE_KEYS)
    async def count(self, ctx: Context) -> int:
        """Count documents. `search` is part of the cache key but not applied."""
        return await self.collection.count_documents({})

    @action(name=ACTION_CREATE)
    async def create(self, ctx: Context) -> dict[str, Any]:
        """Insert `entity` and return the stored document."""
        entity = ctx.params.get("entity")
        doc = dict(entity) if isinstance(entity, Mapping) else entity
        result = await self.collection.insert_one(doc)
        doc.setdefault("_id", result.inserted_id)
        contextual_logger.debug("Entity created", extra={"id": str(result.inserted_id)})

        json = self.to_json(DriverDocument(doc))
        json = await self.populate(ctx, json)
        await self.clear_cache()
        return json

    @action(name=ACTION_GET, cache_keys=GET_CACHE_KEYS)
    async def get(self, ctx: Context) -> dict[str, Any] | None:
        """Fetch one document by `id`; None when it does not exist."""
        doc = await self.collection.find_one({"_id": coerce_object_id(ctx.params.get("id"))})
        json = self.to_json(DriverDocument.wrap(doc))
        return await self.populate(ctx, json)

    @action(name=ACTION_UPDATE)
    async def update(self, ctx: Context) -> dict[str, Any] | None:
        """Apply the `update` patch to document `id` and return the new version."""
        query = {"_id": coerce_object_id(ctx.params.get("id"))}
        update = to_update_document(ctx.params.get("update"))
        if isinstance(update, Mapping) and not update:
            # The driver rejects empty updates; nothing to change.
            doc = await self.collection.find_one(query)
        else:
            doc = await self.collection.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        json = self.to_json(DriverDocument.wrap(doc))
        json = await self.populate(ctx, json)
        await self.clear_cache()
        return json

    @action(name=ACTION_REMOVE)
    async def remove(self, ctx: Context) -> None:
        """Delete document `id`. Removing a missing document is not an error."""
        await self.collection.find_one_and_delete({"_id": coerce_object_id(ctx.params.get("id"))})
        await self.clear_cache()

    @action(name=ACTION_DROP)
    async def drop(self, ctx: Context) -> None:
        """Delete every document of the collection."""
        result = await self.collection.delete_many({})
        contextual_logger.info(
            "Collection emptied", extra={"deleted_count": getattr(result, "deleted_count", None)}
        )
        await self.clear_cache()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def to_json(
        self,
        docs: Any,
        property_filter: str | Sequence[str] | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Project document(s), defaulting to the `propertyFilter` setting."""
        if property_filter is None:
            property_filter = self.settings.property_filter
        return to_json(docs, property_filter)

    async def populate(self, ctx: Context, docs: Any) -> Any:
        """Run the schema's populate hook on projected results (identity by default)."""
        if self.schema.populate is None or docs is None:
            return docs
        result = self.schema.populate(ctx, docs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def clear_cache(self) -> None:
        await self.cache.clear_cache()
