"""
# Storage Manager

The `StorageManager` is the storage facade handed to the rest of the health service.
It owns the MongoDB connection, brings every declared collection into a consistent,
query-ready state on startup, and exposes the ready collections afterwards.

## Startup Sequence

`start()` runs strictly in order, one operation at a time:

```
connect (bounded connect + ping)
  └─ validate catalog order
      └─ for each CollectionDescriptor, in declared order:
            ensure indexes  →  prune policies  →  seed policies
          └─ assemble the storage handle
              └─ launch the change notifier in the background
```

Any failure before the handle is assembled closes the connection and re-raises. No
partial handle is ever exposed: accessors raise `StorageNotReadyError` until `start()`
has returned. There is no degraded mode because downstream code assumes every declared
collection and its seed data exist.

A `SeedConflictError` while seeding means another process inserted the same natural
key first. It is logged and recorded as `INSERTED_BY_ANOTHER_WRITER`, never retried.

The change notifier starts only after the handle is assembled and runs detached:
`start()` does not wait for it, and a change-feed failure never affects startup.

## Usage Example

```python
from health_storage.config import settings
from health_storage.database import StorageManager


class ConfigReloader:
    def on_config_changed(self):
        reload_queue.put_nowait("configs")


storage = StorageManager(settings, listener=ConfigReloader())
await storage.start()

user = await storage.users.find_one({"external_id": external_id})

await storage.stop()
```
"""

import time
from typing import Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase

from health_storage.config import Settings
from health_storage.database import catalog
from health_storage.database.catalog import COLLECTION_DESCRIPTORS
from health_storage.database.change_notifier import ChangeNotifier, StorageListener
from health_storage.database.connection import ConnectionHandle, connect
from health_storage.database.errors import SeedConflictError, StorageError, StorageNotReadyError
from health_storage.database.provisioner import ensure, validate_descriptor_order, verify
from health_storage.database.seed_assets import SeedAssetLoader
from health_storage.database.seeding import SeedContext, apply_prune_policy, apply_seed_policy
from health_storage.managers.logging_manager import get_logger, set_log_level
from health_storage.models.storage_models import (
    CollectionDescriptor,
    CollectionStartupReport,
    IndexVerificationReport,
    SeedOutcome,
    StartupReport,
)

logger = get_logger()
db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")


class StorageManager:
    """
    Storage facade: connection lifecycle, collection provisioning and typed access.

    Args:
        settings: Connection URI, database name, timeout and seed asset location.
        listener: Notified when the configuration collection changes. Optional.
        descriptors: Collection catalog, in provisioning order.
        asset_loader: Seed asset source. Defaults to `settings.seed_data_path`.

    Attributes:
        startup_report: Per-collection results of the last successful `start()`.
        notifier: The running change notifier, or `None`.
    """

    def __init__(
        self,
        settings: Settings,
        listener: Optional[StorageListener] = None,
        descriptors: Sequence[CollectionDescriptor] = COLLECTION_DESCRIPTORS,
        asset_loader: Optional[SeedAssetLoader] = None,
    ):
        self.settings = settings
        self.listener = listener
        self.descriptors = list(descriptors)
        self.asset_loader = asset_loader or SeedAssetLoader(settings.seed_data_path)

        self._connection: Optional[ConnectionHandle] = None
        self._collections: Dict[str, AsyncIOMotorCollection] = {}
        self.notifier: Optional[ChangeNotifier] = None
        self.startup_report: Optional[StartupReport] = None

    @property
    def is_ready(self) -> bool:
        return self._connection is not None

    async def start(self) -> StartupReport:
        """
        Connect, provision every collection, assemble the handle and start watching.

        Returns:
            StartupReport: What was created, pruned and seeded per collection.

        Raises:
            StorageError: Any connection, provisioning, pruning or seeding failure.
                All of them are fatal to process startup.
        """
        if self._connection is not None:
            raise StorageError("storage is already started")

        set_log_level(self.settings.LOG_LEVEL)
        start_time = time.time()
        db_logger.info("Starting storage layer")

        validate_descriptor_order(self.descriptors)

        connection = await connect(
            self.settings.mongodb_connection_string,
            self.settings.MONGODB_DATABASE,
            self.settings.MONGODB_TIMEOUT,
        )

        try:
            collections, report = await self._provision_all(connection)
        except BaseException:
            db_logger.error("Storage startup failed, closing connection")
            connection.close()
            raise

        # assemble the handle
        self._connection = connection
        self._collections = collections
        report.duration = time.time() - start_time
        self.startup_report = report
        perf_logger.info("Storage layer ready in %.3fs (%d collections)", report.duration, len(collections))

        if self.settings.CHANGE_FEED_ENABLED:
            self.notifier = ChangeNotifier(
                connection.collection(self.settings.CONFIGS_COLLECTION),
                listener=self.listener,
                configs_collection=self.settings.CONFIGS_COLLECTION,
            )
            self.notifier.watch()
        else:
            db_logger.info("Change feed disabled, configuration changes will not be observed")

        return report

    async def _provision_all(self, connection: ConnectionHandle):
        collections: Dict[str, AsyncIOMotorCollection] = {}
        report = StartupReport()
        context = SeedContext(collections, self.asset_loader)

        for descriptor in self.descriptors:
            collection_start = time.time()
            logger.info("apply %s checks.....", descriptor.name)
            collection = connection.collection(descriptor.name)
            entry = CollectionStartupReport(collection=descriptor.name)

            entry.provision = await ensure(collection, descriptor)

            for prune_policy in descriptor.prune_policies:
                entry.pruned += await apply_prune_policy(collection, prune_policy)

            # seed lookups may need this collection too
            collections[descriptor.name] = collection
            for seed_policy in descriptor.seed_policies:
                try:
                    outcome = await apply_seed_policy(collection, seed_policy, context)
                except SeedConflictError as e:
                    logger.warning(
                        "Seed %s for %s was inserted concurrently by another writer: %s",
                        seed_policy.key,
                        descriptor.name,
                        e,
                    )
                    outcome = SeedOutcome.INSERTED_BY_ANOTHER_WRITER
                entry.seeds[seed_policy.key] = outcome

            entry.duration = time.time() - collection_start
            report.collections.append(entry)
            logger.info("%s checks passed", descriptor.name)

        return collections, report

    async def stop(self) -> None:
        """Stop the change notifier and close the connection. Safe to call twice."""
        if self.notifier is not None:
            await self.notifier.stop()
            self.notifier = None

        if self._connection is None:
            db_logger.warning("Stop called but storage is not started")
            return

        start = time.time()
        self._connection.close()
        self._connection = None
        self._collections = {}
        perf_logger.info("Storage layer stopped in %.3fs", time.time() - start)

    async def health_check(self) -> bool:
        """Return `True` if the storage is started and the server answers a ping."""
        if self._connection is None:
            health_logger.warning("Health check failed: storage not started")
            return False
        return await self._connection.ping()

    async def verify_indexes(self) -> List[IndexVerificationReport]:
        """Compare declared and actual indexes of every collection."""
        return [
            await verify(self.get_collection(descriptor.name), descriptor) for descriptor in self.descriptors
        ]

    @property
    def connection(self) -> ConnectionHandle:
        if self._connection is None:
            raise StorageNotReadyError("storage is not started, call start() first")
        return self._connection

    @property
    def database(self) -> AsyncIOMotorDatabase:
        return self.connection.database

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        """
        Raises:
            StorageNotReadyError: Before `start()` completed, or for an undeclared collection.
        """
        if self._connection is None:
            raise StorageNotReadyError(f"collection {name!r} requested before storage started")
        try:
            return self._collections[name]
        except KeyError:
            raise StorageNotReadyError(f"collection {name!r} is not declared in the catalog") from None

    @property
    def configs(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.CONFIGS)

    @property
    def users(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.USERS)

    @property
    def providers(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.PROVIDERS)

    @property
    def locations(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.LOCATIONS)

    @property
    def ctests(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.CTESTS)

    @property
    def manualtests(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.MANUALTESTS)

    @property
    def emanualtests(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.EMANUALTESTS)

    @property
    def resources(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.RESOURCES)

    @property
    def faq(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.FAQ)

    @property
    def news(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.NEWS)

    @property
    def status(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.STATUS)

    @property
    def estatus(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.ESTATUS)

    @property
    def history(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.HISTORY)

    @property
    def ehistory(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.EHISTORY)

    @property
    def counties(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.COUNTIES)

    @property
    def testtypes(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.TESTTYPES)

    @property
    def rules(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.RULES)

    @property
    def symptomgroups(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.SYMPTOMGROUPS)

    @property
    def symptomrules(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.SYMPTOMRULES)

    @property
    def symptoms(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.SYMPTOMS)

    @property
    def crules(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.CRULES)

    @property
    def traceexposures(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.TRACEEXPOSURES)

    @property
    def accessrules(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.ACCESSRULES)

    @property
    def uinoverrides(self) -> AsyncIOMotorCollection:
        return self.get_collection(catalog.UINOVERRIDES)
