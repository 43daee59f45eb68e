"""
# Collection Provisioner

Applies the indexes declared in a `CollectionDescriptor` to its collection.

## Index Semantics

For each declared `IndexSpec`, in order:

| Existing state | Result |
|----------------|--------|
| No index on the key | `create_index` is issued |
| Index on the same key with the same uniqueness | no-op, reported as existing |
| Index on the same key with different uniqueness | `IndexConflictError` |
| Existing documents violate a new unique index | `UniqueConstraintViolationError` |

Existing indexes are matched by **key pattern**, not by name, so indexes created
under a different naming scheme are recognised as equivalent.

All index operations for one collection run sequentially; the first failure aborts
provisioning of that collection and, through the caller, the whole startup.

## Usage Example

```python
report = await ensure(handle.collection("users"), users_descriptor)
print(report.created, report.existing)

verification = await verify(handle.collection("users"), users_descriptor)
if not verification.ok:
    logger.warning("Indexes out of sync: %s", verification.missing)
```
"""

import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from health_storage.database.errors import (
    IndexConflictError,
    ProvisionError,
    StorageConfigError,
    UniqueConstraintViolationError,
)
from health_storage.managers.logging_manager import get_logger
from health_storage.models.storage_models import (
    CollectionDescriptor,
    IndexSpec,
    IndexVerificationReport,
    ProvisionReport,
)

logger = get_logger(prefix="[Provisioner]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")

KeyPattern = Tuple[Tuple[str, Union[int, str]], ...]


def _normalize_key(key: Any) -> KeyPattern:
    """
    Key pattern from `index_information()` as a comparable tuple.

    Numeric directions may come back as floats and are coerced to int. Special
    index types (`2dsphere`, `text`, `hashed`) keep their string value and never
    match a declared ascending/descending key.
    """
    if isinstance(key, dict):
        items = key.items()
    else:
        items = key
    return tuple(
        (str(field), int(direction) if isinstance(direction, (int, float)) else direction)
        for field, direction in items
    )


async def _existing_indexes(collection: AsyncIOMotorCollection) -> Dict[KeyPattern, Tuple[str, bool]]:
    try:
        info = await collection.index_information()
    except OperationFailure as e:
        # NamespaceNotFound: the collection does not exist yet, so it has no indexes
        if e.code == 26:
            return {}
        raise ProvisionError(
            f"failed to list indexes on {collection.name}: {e}", collection=collection.name
        ) from e
    except PyMongoError as e:
        raise ProvisionError(f"failed to list indexes on {collection.name}: {e}", collection=collection.name) from e

    existing: Dict[KeyPattern, Tuple[str, bool]] = {}
    for name, details in info.items():
        existing[_normalize_key(details.get("key", []))] = (name, bool(details.get("unique", False)))
    return existing


async def ensure_index(
    collection: AsyncIOMotorCollection,
    spec: IndexSpec,
    existing: Optional[Dict[KeyPattern, Tuple[str, bool]]] = None,
) -> bool:
    """
    Ensure a single index exists.

    Returns:
        bool: `True` if the index was created, `False` if an equivalent one already existed.

    Raises:
        IndexConflictError: An index on the same key exists with different uniqueness,
            or the server rejected the index options.
        UniqueConstraintViolationError: Existing documents violate the unique constraint.
        ProvisionError: Any other driver failure.
    """
    if existing is None:
        existing = await _existing_indexes(collection)

    key = spec.keys
    found = existing.get(key)
    if found is not None:
        found_name, found_unique = found
        if found_unique != spec.unique:
            raise IndexConflictError(
                f"index {found_name!r} on {collection.name} has key {list(key)} with unique={found_unique}, "
                f"declared unique={spec.unique}",
                collection=collection.name,
                index_name=found_name,
            )
        logger.debug("Index '%s' on %s already exists as '%s'", spec.index_name, collection.name, found_name)
        return False

    start = time.time()
    try:
        await collection.create_index(spec.key_list, name=spec.index_name, unique=spec.unique)
    except DuplicateKeyError as e:
        raise UniqueConstraintViolationError(
            f"existing documents in {collection.name} violate unique index {spec.index_name!r}: {e}",
            collection=collection.name,
            index_name=spec.index_name,
        ) from e
    except OperationFailure as e:
        if e.code == 11000:
            raise UniqueConstraintViolationError(
                f"existing documents in {collection.name} violate unique index {spec.index_name!r}: {e}",
                collection=collection.name,
                index_name=spec.index_name,
            ) from e
        raise IndexConflictError(
            f"could not create index {spec.index_name!r} on {collection.name}: {e}",
            collection=collection.name,
            index_name=spec.index_name,
        ) from e
    except PyMongoError as e:
        raise ProvisionError(
            f"could not create index {spec.index_name!r} on {collection.name}: {e}",
            collection=collection.name,
            index_name=spec.index_name,
        ) from e

    existing[key] = (spec.index_name, spec.unique)
    perf_logger.debug("Created index '%s' on %s in %.3fs", spec.index_name, collection.name, time.time() - start)
    logger.info("Created index %s on collection %s (unique=%s)", spec.index_name, collection.name, spec.unique)
    return True


async def ensure(collection: AsyncIOMotorCollection, descriptor: CollectionDescriptor) -> ProvisionReport:
    """
    Apply every index declared by `descriptor`, sequentially.

    Calling this twice leaves the same index set as calling it once.

    Raises:
        ProvisionError: On the first index that cannot be ensured.
    """
    report = ProvisionReport(collection=descriptor.name)
    if not descriptor.indexes:
        logger.debug("No indexes declared for %s", descriptor.name)
        return report

    existing = await _existing_indexes(collection)
    for spec in descriptor.indexes:
        if await ensure_index(collection, spec, existing):
            report.created.append(spec.index_name)
        else:
            report.existing.append(spec.index_name)

    logger.info(
        "Index check for %s completed: %d created, %d already present",
        descriptor.name,
        len(report.created),
        len(report.existing),
    )
    return report


async def verify(collection: AsyncIOMotorCollection, descriptor: CollectionDescriptor) -> IndexVerificationReport:
    """
    Compare declared and actual indexes without changing anything.

    Raises:
        ProvisionError: If the index list cannot be read.
    """
    report = IndexVerificationReport(collection=descriptor.name)
    existing = await _existing_indexes(collection)
    for spec in descriptor.indexes:
        found = existing.get(spec.keys)
        if found is None:
            report.missing.append(spec.index_name)
            logger.warning("Missing index %s on collection %s", spec.index_name, descriptor.name)
        elif found[1] != spec.unique:
            report.conflicting.append(spec.index_name)
            logger.warning("Conflicting index %s on collection %s", found[0], descriptor.name)
        else:
            report.verified.append(spec.index_name)
    return report


def validate_descriptor_order(descriptors: Sequence[CollectionDescriptor]) -> List[str]:
    """
    Check that every dependency names a collection declared earlier.

    Returns:
        List[str]: Collection names in provisioning order.

    Raises:
        StorageConfigError: On duplicate names or a dependency that is missing or declared later.
    """
    seen: List[str] = []
    for descriptor in descriptors:
        if descriptor.name in seen:
            raise StorageConfigError(f"collection {descriptor.name!r} is declared more than once")
        for dependency in descriptor.dependencies:
            if dependency == descriptor.name:
                raise StorageConfigError(f"collection {descriptor.name!r} cannot depend on itself")
            if dependency not in seen:
                raise StorageConfigError(
                    f"collection {descriptor.name!r} depends on {dependency!r}, which must be declared before it"
                )
        seen.append(descriptor.name)
    return seen
