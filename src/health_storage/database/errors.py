"""Storage layer exception hierarchy.

Each bootstrap phase raises its own error type. Everything raised while
`StorageManager.start()` runs is fatal to process startup.
"""

from typing import Optional


class StorageError(Exception):
    """Base exception for all storage layer failures."""


class StorageConfigError(StorageError):
    """Raised for invalid storage configuration or collection catalog."""


class StorageNotReadyError(StorageError):
    """Raised when collections are requested before `start()` completed."""


class DatabaseConnectionError(StorageError):
    """Raised when the connection to MongoDB cannot be established."""

    phase = "connect"


class ConnectFailedError(DatabaseConnectionError):
    """Connect timed out, the network failed, or the URI was rejected."""

    phase = "connect"


class AuthenticationFailedError(DatabaseConnectionError):
    """The server rejected the supplied credentials."""

    phase = "authenticate"


class PingFailedError(DatabaseConnectionError):
    """The server became unreachable after the client connected."""

    phase = "ping"


class ProvisionError(StorageError):
    """Raised when a collection's indexes cannot be ensured."""

    def __init__(self, message: str, collection: Optional[str] = None, index_name: Optional[str] = None):
        super().__init__(message)
        self.collection = collection
        self.index_name = index_name


class IndexConflictError(ProvisionError):
    """An index on the same key already exists with different options."""


class UniqueConstraintViolationError(ProvisionError):
    """Existing documents violate a newly declared unique index."""


class SeedError(StorageError):
    """Raised when seeding or pruning a collection fails."""

    def __init__(self, message: str, collection: Optional[str] = None):
        super().__init__(message)
        self.collection = collection


class MissingSeedDependencyError(SeedError):
    """A lookup the seed data depends on returned no document."""


class SeedGenerationError(SeedError):
    """The seed generator could not build the documents to insert."""


class SeedInsertError(SeedError):
    """Inserting generated seed documents failed."""


class SeedConflictError(SeedInsertError):
    """Seed insert hit a unique index: another writer seeded the same key first."""


class PruneError(SeedError):
    """Removing finalized documents from an ephemeral collection failed."""


class ChangeFeedError(StorageError):
    """The change stream subscription dropped. Notifications stop until restart."""
