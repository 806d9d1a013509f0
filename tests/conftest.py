"""
Pytest configuration and shared fixtures for MDB_CRUD tests.

This module provides:
- An in-memory stand-in for a Motor collection and its cursors
- Broker and data service fixtures
- Test data factories
"""

import asyncio
import copy
from types import SimpleNamespace
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument

from mdb_crud.broker import EventBus, MemoryCacher, ServiceBroker
from mdb_crud.observability import get_metrics_collector
from mdb_crud.service import CollectionSchema

# ============================================================================
# IN-MEMORY COLLECTION
# ============================================================================


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in query.items())


class FakeCursor:
    """Cursor over a snapshot of documents; modifiers are recorded and applied lazily."""

    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs
        self.limit_value = 0
        self.skip_value = 0
        self.sort_value = None

    def limit(self, value: int) -> "FakeCursor":
        self.limit_value = value
        return self

    def skip(self, value: int) -> "FakeCursor":
        self.skip_value = value
        return self

    def sort(self, pairs) -> "FakeCursor":
        self.sort_value = list(pairs)
        return self

    async def to_list(self, length=None) -> List[Dict[str, Any]]:
        docs = list(self._docs)
        for field, direction in reversed(self.sort_value or []):
            docs.sort(key=lambda doc: doc.get(field), reverse=direction < 0)
        docs = docs[self.skip_value :]
        if self.limit_value:
            docs = docs[: self.limit_value]
        return docs


class FakeCollection:
    """
    Minimal in-memory Motor collection.

    Supports equality queries, ``$set``/``$inc`` updates and the call
    shapes used by the CRUD actions. ``cursors`` keeps every cursor handed
    out so tests can inspect the applied modifiers.
    """

    def __init__(self, name: str = "posts"):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.cursors: List[FakeCursor] = []

    async def insert_one(self, doc: Dict[str, Any]):
        if "_id" not in doc:
            doc["_id"] = ObjectId()
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    def find(self, query=None) -> FakeCursor:
        cursor = FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query or {})])
        self.cursors.append(cursor)
        return cursor

    async def find_one(self, query):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        if not update:
            raise ValueError("update cannot be empty")
        for doc in self.docs:
            if _matches(doc, query):
                before = copy.deepcopy(doc)
                doc.update(update.get("$set", {}))
                for key, amount in update.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + amount
                return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before
        return None

    async def find_one_and_delete(self, query):
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                return self.docs.pop(index)
        return None

    async def delete_many(self, query):
        kept = [d for d in self.docs if not _matches(d, query)]
        deleted = len(self.docs) - len(kept)
        self.docs = kept
        return SimpleNamespace(deleted_count=deleted)

    async def count_documents(self, query):
        return sum(1 for d in self.docs if _matches(d, query))


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with an empty global metrics collector."""
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    """Keep host environment settings out of the tests."""
    monkeypatch.delenv("MONGO_URI", raising=False)
    monkeypatch.delenv("MDB_CRUD_MAX_LIMIT", raising=False)


@pytest.fixture
def fake_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def mongo_uri() -> str:
    return "mongodb://localhost:27017/blog"


@pytest.fixture
def broker() -> ServiceBroker:
    """Broker with an in-memory cacher."""
    return ServiceBroker(cacher=MemoryCacher(), bus=EventBus())


@pytest.fixture
def posts_schema(fake_collection, mongo_uri) -> CollectionSchema:
    return CollectionSchema(
        name="posts",
        collection=fake_collection,
        settings={"db": mongo_uri},
    )


@pytest.fixture
def posts_service(broker, posts_schema):
    """Registered `posts` service backed by the in-memory collection."""
    return broker.create_service(posts_schema)


@pytest.fixture
def clean_events(broker) -> List[Any]:
    """Payloads of every `cache.clean` event emitted on the broker."""
    events: List[Any] = []
    broker.on("cache.clean", events.append)
    return events


async def _unanswered_ping(*args, **kwargs):
    await asyncio.Event().wait()


def make_motor_client(ping: Any = None) -> MagicMock:
    """Mock Motor client whose ``admin.command`` is awaitable; pings never answer by default."""
    client = MagicMock(name="AsyncIOMotorClient()")
    client.admin.command = AsyncMock(side_effect=ping or _unanswered_ping)
    return client


@pytest.fixture
def mock_motor_client() -> MagicMock:
    """Factory patched in for AsyncIOMotorClient; returns a new mock client per call."""
    return MagicMock(side_effect=lambda *args, **kwargs: make_motor_client())


@pytest.fixture
def motor_client_factory():
    """Builds mock Motor clients with a chosen ping behaviour."""
    return make_motor_client


@pytest.fixture
def sample_posts() -> List[Dict[str, Any]]:
    return [
        {"title": "Alpha", "views": 10, "author": {"name": "Ann", "email": "ann@example.com"}},
        {"title": "Bravo", "views": 30, "author": {"name": "Bob", "email": "bob@example.com"}},
        {"title": "Charlie", "views": 20, "author": {"name": "Cid", "email": "cid@example.com"}},
    ]


@pytest.fixture
def collection_factory():
    """Build additional in-memory collections by name."""
    return FakeCollection
