from collections import defaultdict
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

from bson import ObjectId
import pytest


class FakeCursor:
    """Async cursor over a fixed list of documents, enough for the Motor calls we make."""

    def __init__(self, docs=None):
        self.docs = list(docs or [])
        self.skipped = 0
        self.limited = None

    def sort(self, *args, **kwargs):
        return self

    # The documents stand for the page the server would return, so these only record
    def skip(self, count):
        self.skipped = count
        return self

    def limit(self, count):
        self.limited = count
        return self

    async def to_list(self, length=None):
        return list(self.docs)

    def __aiter__(self):
        self._iter = iter(self.docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


def make_collection():
    collection = MagicMock()
    for name in (
        "find_one",
        "insert_one",
        "update_one",
        "update_many",
        "delete_one",
        "find_one_and_update",
        "find_one_and_delete",
        "count_documents",
        "create_index",
    ):
        setattr(collection, name, AsyncMock())
    collection.find.return_value = FakeCursor()
    collection.aggregate.return_value = FakeCursor()
    return collection


@pytest.fixture
def mock_db():
    """DatabaseManager stand-in with one mocked collection per name and no transactions."""
    db = MagicMock()
    collections = defaultdict(make_collection)
    db.collections = collections
    db.get_collection.side_effect = lambda name: collections[name]
    db.connect = AsyncMock()
    db.disconnect = AsyncMock()
    db.create_indexes = AsyncMock()
    db.health_check = AsyncMock(return_value=True)

    @asynccontextmanager
    async def transaction():
        yield None

    db.transaction = transaction
    return db


@pytest.fixture
def user_doc():
    return {
        "_id": ObjectId(),
        "email": "buyer@example.com",
        "role": "user",
        "is_approved": False,
        "research_cards": 5,
        "agent_points": 0,
    }


@pytest.fixture
def agent_doc():
    return {
        "_id": ObjectId(),
        "email": "agent@example.com",
        "role": "agent",
        "is_approved": True,
        "research_cards": 10,
        "agent_points": 0,
    }


@pytest.fixture
def admin_doc():
    return {"_id": ObjectId(), "email": "admin@example.com", "role": "admin", "is_approved": True}
