import asyncio
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from pymongo.errors import OperationFailure

from health_storage.database.catalog import COLLECTION_DESCRIPTORS
from health_storage.database.errors import (
    ConnectFailedError,
    MissingSeedDependencyError,
    StorageError,
    StorageNotReadyError,
)
from health_storage.database.manager import StorageManager
from health_storage.models.storage_models import CollectionDescriptor, IndexSpec, SeedOutcome, SeedPolicy


@pytest.fixture
def patched_connect(connection_handle):
    with patch("health_storage.database.manager.connect", new=AsyncMock(return_value=connection_handle)) as mock:
        yield mock


@pytest_asyncio.fixture
async def champaign(fake_db):
    await fake_db["counties"].insert_one({"_id": "county-champaign", "name": "Champaign"})
    return "county-champaign"


@pytest.mark.asyncio
async def test_start_provisions_every_collection(test_settings, patched_connect, fake_db, champaign):
    """Test a full startup against an empty store holding only the Champaign county."""
    storage = StorageManager(test_settings)

    report = await storage.start()

    assert [entry.collection for entry in report.collections] == [d.name for d in COLLECTION_DESCRIPTORS]
    assert await fake_db["symptoms"].count_documents({"app_version": "2.6"}) == 1
    assert await fake_db["crules"].count_documents({"app_version": "2.6", "county_id": champaign}) == 1
    assert [doc["name"] for doc in fake_db["symptomgroups"].documents] == ["gr1", "gr2"]
    assert fake_db["users"].indexes["external_id_unique_idx"]["unique"] is True
    assert fake_db["symptomgroups"].indexes["name_unique_idx"]["unique"] is True
    assert storage.symptoms is fake_db["symptoms"]
    patched_connect.assert_awaited_once_with("mongodb://localhost:27017", "health_test", 1)

    await storage.stop()


@pytest.mark.asyncio
async def test_restart_does_not_reseed(test_settings, patched_connect, fake_db, champaign):
    """Test that a second startup finds everything already present."""
    storage = StorageManager(test_settings)
    await storage.start()
    await storage.stop()

    report = await storage.start()

    seeds = {entry.collection: entry.seeds for entry in report.collections if entry.seeds}
    assert set(seeds["symptoms"].values()) == {SeedOutcome.ALREADY_PRESENT}
    assert set(seeds["crules"].values()) == {SeedOutcome.ALREADY_PRESENT}
    assert len(fake_db["symptoms"].documents) == 1
    assert len(fake_db["symptomgroups"].documents) == 2
    assert all(not entry.provision.created for entry in report.collections)

    await storage.stop()


@pytest.mark.asyncio
async def test_startup_prunes_verified_manual_tests(test_settings, patched_connect, fake_db, champaign):
    emanualtests = fake_db["emanualtests"]
    for _ in range(5):
        await emanualtests.insert_one({"status": "verified"})
    for _ in range(3):
        await emanualtests.insert_one({"status": "unverified"})

    storage = StorageManager(test_settings)
    report = await storage.start()

    entry = next(e for e in report.collections if e.collection == "emanualtests")
    assert entry.pruned == 5
    assert await emanualtests.count_documents({}) == 3

    await storage.stop()


@pytest.mark.asyncio
async def test_missing_county_fails_startup(test_settings, patched_connect, fake_db, fake_client):
    """Test that startup fails when the Champaign county does not exist."""
    storage = StorageManager(test_settings)

    with pytest.raises(MissingSeedDependencyError):
        await storage.start()

    assert fake_db["crules"].documents == []
    # collections before crules were already provisioned and seeded
    assert await fake_db["symptoms"].count_documents({"app_version": "2.6"}) == 1
    assert fake_client.closed is True
    assert storage.is_ready is False
    with pytest.raises(StorageNotReadyError):
        storage.symptoms


@pytest.mark.asyncio
async def test_connect_failure_propagates(test_settings):
    with patch(
        "health_storage.database.manager.connect",
        new=AsyncMock(side_effect=ConnectFailedError("timed out")),
    ):
        storage = StorageManager(test_settings)
        with pytest.raises(ConnectFailedError):
            await storage.start()

    assert storage.is_ready is False


def test_accessors_raise_before_start(test_settings):
    storage = StorageManager(test_settings)

    with pytest.raises(StorageNotReadyError):
        storage.users
    with pytest.raises(StorageNotReadyError):
        storage.get_collection("configs")
    with pytest.raises(StorageNotReadyError):
        storage.connection


@pytest.mark.asyncio
async def test_unknown_collection_is_not_ready(test_settings, patched_connect, champaign):
    storage = StorageManager(test_settings)
    await storage.start()

    with pytest.raises(StorageNotReadyError):
        storage.get_collection("sessions")

    await storage.stop()


@pytest.mark.asyncio
async def test_start_twice_is_an_error(test_settings, patched_connect, champaign):
    storage = StorageManager(test_settings)
    await storage.start()

    with pytest.raises(StorageError):
        await storage.start()

    await storage.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent(test_settings, patched_connect, fake_client, champaign):
    storage = StorageManager(test_settings)
    await storage.start()

    await storage.stop()
    await storage.stop()

    assert fake_client.closed is True
    with pytest.raises(StorageNotReadyError):
        storage.configs


@pytest.mark.asyncio
async def test_health_check(test_settings, patched_connect, fake_db, champaign):
    storage = StorageManager(test_settings)
    assert await storage.health_check() is False

    await storage.start()
    assert await storage.health_check() is True

    fake_db.ping_ok = False
    assert await storage.health_check() is False

    await storage.stop()


@pytest.mark.asyncio
async def test_verify_indexes_after_start(test_settings, patched_connect, champaign):
    storage = StorageManager(test_settings)
    await storage.start()

    reports = await storage.verify_indexes()

    assert len(reports) == len(COLLECTION_DESCRIPTORS)
    assert all(report.ok for report in reports)

    await storage.stop()


class ConflictingSeed(SeedPolicy):
    """Never matches on lookup, always collides on insert."""

    key = "conflicting"

    async def lookup_filter(self, context) -> Dict[str, Any]:
        return {"marker": "never-present"}

    async def generate(self, context) -> Dict[str, Any]:
        return {"app_version": "2.6"}


@pytest.mark.asyncio
async def test_seed_conflict_counts_as_another_writer(test_settings, patched_connect, fake_db):
    """Test that losing the seed race does not fail startup."""
    await fake_db["symptoms"].insert_one({"app_version": "2.6", "items": "[]"})
    descriptors = [
        CollectionDescriptor(
            name="symptoms",
            indexes=[IndexSpec.on("app_version", unique=True, name="app_version_unique_idx")],
            seed_policies=[ConflictingSeed()],
        )
    ]
    storage = StorageManager(test_settings, descriptors=descriptors)

    report = await storage.start()

    assert report.collections[0].seeds == {"conflicting": SeedOutcome.INSERTED_BY_ANOTHER_WRITER}
    assert len(fake_db["symptoms"].documents) == 1

    await storage.stop()


@pytest.mark.asyncio
async def test_change_feed_notifies_listener(test_settings, patched_connect, fake_db, champaign):
    """Test that a configs change after startup reaches the listener exactly once."""
    fake_db["configs"].change_events = [
        {"operationType": "update", "ns": {"db": "health_test", "coll": "configs"}},
        {"operationType": "insert", "ns": {"db": "health_test", "coll": "users"}},
    ]
    listener = MagicMock()
    listener.on_config_changed = MagicMock(return_value=None)
    storage = StorageManager(test_settings.model_copy(update={"CHANGE_FEED_ENABLED": True}), listener=listener)

    await storage.start()
    await asyncio.wait_for(storage.notifier._task, timeout=1)

    listener.on_config_changed.assert_called_once_with()

    await storage.stop()
    assert storage.notifier is None


@pytest.mark.asyncio
async def test_change_feed_failure_does_not_affect_startup(test_settings, patched_connect, fake_db, champaign):
    fake_db["configs"].change_error = OperationFailure("not a replica set", 40573)
    listener = MagicMock()
    listener.on_config_changed = MagicMock(return_value=None)
    storage = StorageManager(test_settings.model_copy(update={"CHANGE_FEED_ENABLED": True}), listener=listener)

    await storage.start()
    await asyncio.wait_for(storage.notifier._task, timeout=1)

    assert storage.notifier.last_error is not None
    assert storage.is_ready is True
    assert await storage.health_check() is True

    await storage.stop()
