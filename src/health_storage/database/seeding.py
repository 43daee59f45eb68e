"""
# Migration/Seed Runner

One-time seeding and unconditional pruning applied during startup.

## Seed-If-Absent

`seed_if_absent(collection, lookup_filter, generator)`:

1.  Query the collection with `lookup_filter`.
2.  If anything matches, log and return `SeedOutcome.ALREADY_PRESENT`.
3.  Otherwise call `generator` and insert what it produces.

Generator and insert failures are raised, never swallowed. A unique-index violation on
insert means another process seeded the same key first; it is raised as
`SeedConflictError` so the caller can treat it as success-by-another-writer.

## Pruning

`prune(collection, terminal_filter)` removes finalized documents from an ephemeral
collection on every startup. Deleting nothing is success.

## Seed Policies

| Policy | Natural key | Document |
|--------|-------------|----------|
| `VersionedContentSeed` | `app_version` | `{app_version, items}` |
| `RegionScopedContentSeed` | `(app_version, county_id)` | `{app_version, county_id, data}` |
| `DefaultDocumentsSeed` | collection empty | fixed default documents |

Region-scoped content resolves the region (county) name to its id in an
already-provisioned collection. If the region does not exist the seed data is
meaningless and `MissingSeedDependencyError` aborts startup.
"""

import inspect
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Sequence, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from health_storage.database.errors import (
    MissingSeedDependencyError,
    PruneError,
    SeedConflictError,
    SeedError,
    SeedGenerationError,
    SeedInsertError,
)
from health_storage.database.seed_assets import SeedAssetLoader
from health_storage.managers.logging_manager import get_logger
from health_storage.models.storage_models import (
    CRules,
    Document,
    PrunePolicy,
    SeedOutcome,
    SeedPolicy,
    SymptomGroup,
    Symptoms,
)

logger = get_logger(prefix="[SeedRunner]")

GeneratedDocuments = Union[Document, List[Document]]
Generator = Callable[[], Union[GeneratedDocuments, Awaitable[GeneratedDocuments]]]


class SeedContext:
    """
    What a seed policy may reach while it runs: the collections provisioned so far
    and the seed asset loader.
    """

    def __init__(self, collections: Mapping[str, AsyncIOMotorCollection], assets: SeedAssetLoader):
        self._collections = collections
        self.assets = assets
        self._resolved: Dict[Tuple[str, str, Any], Any] = {}

    def collection(self, name: str) -> AsyncIOMotorCollection:
        """
        Raises:
            MissingSeedDependencyError: If `name` has not been provisioned yet.
        """
        try:
            return self._collections[name]
        except KeyError:
            raise MissingSeedDependencyError(
                f"collection {name!r} is not provisioned yet", collection=name
            ) from None

    async def resolve_id(self, collection_name: str, field: str, value: Any) -> Any:
        """
        Return the `_id` of the document in `collection_name` whose `field` equals `value`.

        Raises:
            MissingSeedDependencyError: If no such document exists.
            SeedError: If the lookup itself fails.
        """
        cache_key = (collection_name, field, value)
        if cache_key in self._resolved:
            return self._resolved[cache_key]

        collection = self.collection(collection_name)
        try:
            document = await collection.find_one({field: value})
        except PyMongoError as e:
            raise SeedError(
                f"lookup of {field}={value!r} in {collection_name} failed: {e}", collection=collection_name
            ) from e
        if document is None:
            raise MissingSeedDependencyError(
                f"there is no document with {field}={value!r} in {collection_name}", collection=collection_name
            )

        self._resolved[cache_key] = document["_id"]
        return document["_id"]


async def seed_if_absent(
    collection: AsyncIOMotorCollection,
    lookup_filter: Mapping[str, Any],
    generator: Generator,
) -> SeedOutcome:
    """
    Insert generated documents unless `lookup_filter` already matches something.

    Returns:
        SeedOutcome: `INSERTED` or `ALREADY_PRESENT`.

    Raises:
        SeedGenerationError: The generator failed, produced nothing, or returned something other than documents.
        SeedConflictError: The insert hit a unique index (another writer won the race).
        SeedInsertError: Any other insert failure.
        SeedError: The lookup query failed.
    """
    name = collection.name
    try:
        existing = await collection.find_one(dict(lookup_filter))
    except PyMongoError as e:
        raise SeedError(f"seed lookup on {name} failed: {e}", collection=name) from e

    if existing is not None:
        logger.info("Seed data matching %s already present in %s, nothing to do", dict(lookup_filter), name)
        return SeedOutcome.ALREADY_PRESENT

    logger.info("No data matching %s in %s, inserting initial data", dict(lookup_filter), name)
    try:
        generated = generator()
        if inspect.isawaitable(generated):
            generated = await generated
    except SeedError:
        raise
    except Exception as e:
        raise SeedGenerationError(f"seed generator for {name} failed: {e}", collection=name) from e

    if isinstance(generated, Mapping):
        documents = [dict(generated)]
    elif isinstance(generated, (list, tuple)) and all(isinstance(doc, Mapping) for doc in generated):
        documents = [dict(doc) for doc in generated]
    else:
        raise SeedGenerationError(
            f"seed generator for {name} returned {type(generated).__name__}, expected a document or a list of documents",
            collection=name,
        )
    if not documents:
        raise SeedGenerationError(f"seed generator for {name} produced no documents", collection=name)

    try:
        if len(documents) == 1:
            await collection.insert_one(documents[0])
        else:
            await collection.insert_many(documents, ordered=True)
    except DuplicateKeyError as e:
        raise SeedConflictError(f"seed insert into {name} hit a unique index: {e}", collection=name) from e
    except BulkWriteError as e:
        write_errors = (e.details or {}).get("writeErrors", [])
        if any(err.get("code") == 11000 for err in write_errors):
            raise SeedConflictError(f"seed insert into {name} hit a unique index: {e}", collection=name) from e
        raise SeedInsertError(f"seed insert into {name} failed: {e}", collection=name) from e
    except PyMongoError as e:
        raise SeedInsertError(f"seed insert into {name} failed: {e}", collection=name) from e

    logger.info("Inserted %d seed document(s) into %s", len(documents), name)
    return SeedOutcome.INSERTED


async def apply_seed_policy(
    collection: AsyncIOMotorCollection, policy: SeedPolicy, context: SeedContext
) -> SeedOutcome:
    """Resolve the policy's filter and run `seed_if_absent` with its generator."""
    lookup_filter = await policy.lookup_filter(context)
    return await seed_if_absent(collection, lookup_filter, lambda: policy.generate(context))


async def prune(collection: AsyncIOMotorCollection, terminal_filter: Mapping[str, Any]) -> int:
    """
    Delete every document matching `terminal_filter`.

    Returns:
        int: Number of deleted documents. Zero is success.

    Raises:
        PruneError: If counting or deleting fails.
    """
    name = collection.name
    start = time.time()
    try:
        count = await collection.count_documents(dict(terminal_filter))
        if count == 0:
            logger.info("No documents matching %s in %s, nothing to remove", dict(terminal_filter), name)
            return 0

        logger.info("There are %d documents matching %s in %s, removing them", count, dict(terminal_filter), name)
        result = await collection.delete_many(dict(terminal_filter))
    except PyMongoError as e:
        raise PruneError(f"pruning {name} failed: {e}", collection=name) from e

    if result is None:
        raise PruneError(f"delete result for {name} is missing", collection=name)

    logger.info("%d documents were removed from %s in %.3fs", result.deleted_count, name, time.time() - start)
    return result.deleted_count


async def apply_prune_policy(collection: AsyncIOMotorCollection, policy: PrunePolicy) -> int:
    return await prune(collection, policy.terminal_filter)


class VersionedContentSeed(SeedPolicy):
    """Versioned content, one document per app version, e.g. symptoms for 2.6."""

    def __init__(self, app_version: str, asset: str):
        self.app_version = app_version
        self.asset = asset
        self.key = f"app_version={app_version}"
        self.depends_on = ()

    async def lookup_filter(self, context: SeedContext) -> Dict[str, Any]:
        return {"app_version": self.app_version}

    async def generate(self, context: SeedContext) -> Dict[str, Any]:
        return Symptoms(app_version=self.app_version, items=context.assets.load(self.asset)).to_document()


class RegionScopedContentSeed(SeedPolicy):
    """
    Versioned content for one region, keyed by `(app_version, county_id)`.

    The county id is looked up by name in `region_collection`, which must be
    provisioned first.
    """

    def __init__(self, app_version: str, region_name: str, asset: str, region_collection: str = "counties"):
        self.app_version = app_version
        self.region_name = region_name
        self.asset = asset
        self.region_collection = region_collection
        self.key = f"app_version={app_version},region={region_name}"
        self.depends_on = (region_collection,)

    async def _region_id(self, context: SeedContext) -> Any:
        return await context.resolve_id(self.region_collection, "name", self.region_name)

    async def lookup_filter(self, context: SeedContext) -> Dict[str, Any]:
        return {"app_version": self.app_version, "county_id": await self._region_id(context)}

    async def generate(self, context: SeedContext) -> Dict[str, Any]:
        county_id = await self._region_id(context)
        return CRules(app_version=self.app_version, county_id=county_id, data=context.assets.load(self.asset)).to_document()


class DefaultDocumentsSeed(SeedPolicy):
    """Fixed default documents, inserted only while the collection is empty."""

    def __init__(self, key: str, factory: Callable[[], Sequence[Document]]):
        self.key = key
        self.factory = factory
        self.depends_on = ()

    async def lookup_filter(self, context: SeedContext) -> Dict[str, Any]:
        return {}

    async def generate(self, context: SeedContext) -> List[Document]:
        return [dict(doc) for doc in self.factory()]


def default_symptom_groups(names: Sequence[str] = ("gr1", "gr2")) -> List[Document]:
    return [SymptomGroup(id=str(uuid.uuid1()), name=name).to_document() for name in names]
