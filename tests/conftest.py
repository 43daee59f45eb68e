"""
Shared fixtures for storage tests.

`FakeDatabase` / `FakeCollection` implement the slice of the Motor API the storage
layer uses, in memory, and raise the real `pymongo.errors` exceptions a server would.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, OperationFailure

from health_storage.config import Settings
from health_storage.database.connection import ConnectionHandle

_MISSING = object()


def _get_path(document: Dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for path, expected in query.items():
        value = _get_path(document, path)
        if value is _MISSING:
            if expected is not None:
                return False
        elif value != expected:
            return False
    return True


class FakeDeleteResult:
    def __init__(self, deleted_count: int):
        self.deleted_count = deleted_count


class FakeInsertOneResult:
    def __init__(self, inserted_id: Any):
        self.inserted_id = inserted_id


class FakeChangeStream:
    def __init__(self, events: List[Dict[str, Any]], error: Optional[Exception] = None):
        self._events = list(events)
        self._error = error
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        await asyncio.sleep(0)
        if self._events:
            return self._events.pop(0)
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration

    async def close(self):
        self.closed = True


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.documents: List[Dict[str, Any]] = []
        self.indexes: Dict[str, Dict[str, Any]] = {"_id_": {"v": 2, "key": [("_id", 1)]}}
        self.change_events: List[Dict[str, Any]] = []
        self.change_error: Optional[Exception] = None
        self.create_index_calls = 0

    def _unique_key(self, document: Dict[str, Any], key: List[tuple]) -> tuple:
        values = []
        for field, _ in key:
            value = _get_path(document, field)
            values.append(None if value is _MISSING else value)
        return tuple(values)

    def _check_unique(self, document: Dict[str, Any]) -> None:
        for name, info in self.indexes.items():
            if not (info.get("unique") or name == "_id_"):
                continue
            new_key = self._unique_key(document, info["key"])
            for existing in self.documents:
                if self._unique_key(existing, info["key"]) == new_key:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self.name} index: {name}", 11000
                    )

    async def index_information(self) -> Dict[str, Dict[str, Any]]:
        return {name: dict(info) for name, info in self.indexes.items()}

    async def create_index(self, keys, name: Optional[str] = None, unique: bool = False, **kwargs) -> str:
        self.create_index_calls += 1
        key = [tuple(k) for k in keys]
        name = name or "_".join(f"{f}_{d}" for f, d in key)

        for existing_name, info in self.indexes.items():
            same_key = [tuple(k) for k in info["key"]] == key
            same_unique = bool(info.get("unique", False)) == unique
            if existing_name == name and not (same_key and same_unique):
                raise OperationFailure(f"Index with name: {name} already exists with different options", 85)
            if same_key and existing_name != name:
                raise OperationFailure(f"Index already exists with a different name: {existing_name}", 85)
            if same_key and same_unique:
                return name

        if unique:
            seen = set()
            for document in self.documents:
                value = self._unique_key(document, key)
                if value in seen:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {name}", 11000)
                seen.add(value)

        info: Dict[str, Any] = {"v": 2, "key": key}
        if unique:
            info["unique"] = True
        self.indexes[name] = info
        return name

    async def find_one(self, query: Optional[Dict[str, Any]] = None):
        query = query or {}
        result = next((dict(d) for d in self.documents if _matches(d, query)), None)
        # the read completes before other coroutines get to run
        await asyncio.sleep(0)
        return result

    async def insert_one(self, document: Dict[str, Any]):
        document.setdefault("_id", ObjectId())
        self._check_unique(document)
        self.documents.append(document)
        return FakeInsertOneResult(document["_id"])

    async def insert_many(self, documents: List[Dict[str, Any]], ordered: bool = True):
        for document in documents:
            await self.insert_one(document)

    async def count_documents(self, query: Dict[str, Any]) -> int:
        return sum(1 for d in self.documents if _matches(d, query))

    async def delete_many(self, query: Dict[str, Any]):
        before = len(self.documents)
        self.documents = [d for d in self.documents if not _matches(d, query)]
        return FakeDeleteResult(before - len(self.documents))

    def watch(self, *args, **kwargs):
        return FakeChangeStream(self.change_events, self.change_error)


class FakeDatabase:
    def __init__(self, name: str = "health_test"):
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}
        self.ping_ok = True

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def command(self, name, *args, **kwargs):
        if not self.ping_ok:
            raise OperationFailure("ping failed", 6)
        return {"ok": 1.0}


class FakeClient:
    def __init__(self, database: FakeDatabase):
        self.database = database
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.database

    def close(self):
        self.closed = True


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_client(fake_db) -> FakeClient:
    return FakeClient(fake_db)


@pytest.fixture
def connection_handle(fake_client, fake_db) -> ConnectionHandle:
    return ConnectionHandle(fake_client, fake_db, timeout=1.0, hello={})


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        MONGODB_URL="mongodb://localhost:27017",
        MONGODB_DATABASE="health_test",
        MONGODB_TIMEOUT=1,
        CHANGE_FEED_ENABLED=False,
    )


@pytest.fixture
def fake_collection(fake_db) -> FakeCollection:
    return fake_db["items"]
