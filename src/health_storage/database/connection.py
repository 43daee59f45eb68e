"""
# Connection Manager

Opens the MongoDB connection used by the storage layer and proves it is alive.

`connect()` runs two phases, each with its **own** deadline of `timeout` seconds:

1.  **Connect**: create the Motor client and complete the server handshake (`hello`).
2.  **Ping**: run `ping` against the target database.

Failures map onto distinct error kinds so the caller can tell them apart:

| Failure | Error |
|---------|-------|
| Timeout, network failure, bad URI during connect | `ConnectFailedError` |
| Credentials rejected | `AuthenticationFailedError` |
| Ping fails after connect succeeded | `PingFailedError` |

There is no retry here. A failed startup is reported to the caller and the
process supervisor decides whether to restart.
"""

import asyncio
import time
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConfigurationError, OperationFailure, PyMongoError

from health_storage.config import redact_url
from health_storage.database.errors import (
    AuthenticationFailedError,
    ConnectFailedError,
    DatabaseConnectionError,
    PingFailedError,
)
from health_storage.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")

# Server codes for AuthenticationFailed and Unauthorized
AUTH_ERROR_CODES = frozenset({18, 11})


def _is_auth_failure(exc: BaseException) -> bool:
    if isinstance(exc, OperationFailure) and exc.code in AUTH_ERROR_CODES:
        return True
    message = str(exc).lower()
    return "authentication failed" in message or "auth failed" in message


class ConnectionHandle:
    """
    An established, pinged MongoDB connection.

    Attributes:
        client: The Motor client. Safe for concurrent use by any number of coroutines.
        database: The selected database.
        transactions_supported: True for replica sets and mongos routers.
    """

    def __init__(
        self,
        client: AsyncIOMotorClient,
        database: AsyncIOMotorDatabase,
        timeout: float,
        hello: Optional[Dict[str, Any]] = None,
    ):
        self.client = client
        self.database = database
        self.timeout = timeout
        hello = hello or {}
        self.transactions_supported: bool = bool(hello.get("setName") or hello.get("msg") == "isdbgrid")
        self._closed = False

    @property
    def name(self) -> str:
        return self.database.name

    @property
    def closed(self) -> bool:
        return self._closed

    def collection(self, name: str) -> AsyncIOMotorCollection:
        return self.database[name]

    async def ping(self) -> bool:
        """Check the server still answers. Never raises."""
        start = time.time()
        try:
            await asyncio.wait_for(self.database.command("ping"), timeout=self.timeout)
            perf_logger.debug("Ping answered in %.3fs", time.time() - start)
            return True
        except (PyMongoError, asyncio.TimeoutError, ConnectionError) as e:
            health_logger.error("Database ping failed after %.3fs: %s", time.time() - start, e)
            return False

    def close(self) -> None:
        if self._closed:
            return
        self.client.close()
        self._closed = True
        db_logger.info("Closed MongoDB connection to database: %s", self.database.name)


async def connect(uri: str, database_name: str, timeout: float) -> ConnectionHandle:
    """
    Connect to MongoDB and verify liveness.

    Args:
        uri: MongoDB connection string. Credentials are never logged.
        database_name: Database holding the application's collections.
        timeout: Seconds allowed for the connect phase and, separately, the ping phase.

    Returns:
        ConnectionHandle: The live connection.

    Raises:
        ConnectFailedError: Connect timed out, the network failed, or the URI is invalid.
        AuthenticationFailedError: The server rejected the credentials.
        PingFailedError: The ping after a successful connect failed or timed out.
    """
    start_time = time.time()
    timeout_ms = int(timeout * 1000)
    db_logger.info(
        "Connecting to MongoDB - URL: %s, Database: %s, Timeout: %.1fs",
        redact_url(uri),
        database_name,
        timeout,
    )

    # Connect phase
    try:
        client = AsyncIOMotorClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
    except (ConfigurationError, ValueError, TypeError) as e:
        db_logger.error("Invalid MongoDB connection settings: %s", e)
        raise ConnectFailedError(f"invalid MongoDB connection settings: {e}") from e

    try:
        hello = await asyncio.wait_for(client.admin.command("hello"), timeout=timeout)
    except asyncio.TimeoutError as e:
        client.close()
        perf_logger.warning("Connect phase timed out after %.3fs", time.time() - start_time)
        raise ConnectFailedError(f"timed out connecting to MongoDB after {timeout}s") from e
    except PyMongoError as e:
        client.close()
        perf_logger.warning("Connect phase failed after %.3fs", time.time() - start_time)
        if _is_auth_failure(e):
            db_logger.error("MongoDB authentication failed: %s", e)
            raise AuthenticationFailedError(f"MongoDB authentication failed: {e}") from e
        db_logger.error("Failed to connect to MongoDB: %s", e)
        raise ConnectFailedError(f"failed to connect to MongoDB: {e}") from e

    connect_duration = time.time() - start_time
    database = client[database_name]

    # Ping phase
    ping_start = time.time()
    try:
        await asyncio.wait_for(database.command("ping"), timeout=timeout)
    except asyncio.TimeoutError as e:
        client.close()
        raise PingFailedError(f"ping to MongoDB timed out after {timeout}s") from e
    except PyMongoError as e:
        client.close()
        if _is_auth_failure(e):
            db_logger.error("MongoDB authentication failed: %s", e)
            raise AuthenticationFailedError(f"MongoDB authentication failed: {e}") from e
        db_logger.error("MongoDB ping failed: %s", e)
        raise PingFailedError(f"MongoDB ping failed: {e}") from e
    ping_duration = time.time() - ping_start

    handle = ConnectionHandle(client, database, timeout, hello)
    perf_logger.info(
        "MongoDB connection established in %.3fs (connect: %.3fs, ping: %.3fs)",
        time.time() - start_time,
        connect_duration,
        ping_duration,
    )
    db_logger.info(
        "Successfully connected to MongoDB database: %s (transactions: %s)",
        database_name,
        handle.transactions_supported,
    )
    return handle


__all__ = ["ConnectionHandle", "DatabaseConnectionError", "connect"]
