"""
# Change Notifier

Watches a MongoDB change stream and tells the injected `StorageListener` when the
configuration collection changes.

## State

```
UNSUBSCRIBED --watch()--> WATCHING
```

There is no automatic transition back. If the stream drops, the error is logged and
kept in `last_error`, and notifications stop until the process restarts. A dropped
feed never affects the storage layer itself: live configuration updates are best
effort.

## Dispatch

Every raw change document is decoded once into a `ChangeEvent`. Events without a
namespace or collection name are dropped. The collection name selects a handler:
only the configuration collection is wired, and its handler calls
`listener.on_config_changed()` exactly once per event, with no payload. Events for
other collections are logged and ignored.

The listener runs inline on the single delivery path, so a slow listener delays every
following event. Listeners should only schedule work and return.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Union

from motor.motor_asyncio import AsyncIOMotorChangeStream, AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from health_storage.database.errors import ChangeFeedError
from health_storage.managers.logging_manager import get_logger
from health_storage.models.storage_models import ChangeEvent

logger = get_logger(prefix="[ChangeNotifier]")

Handler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class StorageListener(Protocol):
    """Receives storage notifications. `on_config_changed` may be sync or async."""

    def on_config_changed(self) -> Any:
        ...


class NotifierState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    WATCHING = "watching"


class ChangeNotifier:
    """
    Single background task delivering change notifications.

    Args:
        collection: Collection whose change stream is watched.
        listener: Notified when the configuration collection changes.
        configs_collection: Name of the configuration collection.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        listener: Optional[StorageListener] = None,
        configs_collection: str = "configs",
    ):
        self._collection = collection
        self.listener = listener
        self.configs_collection = configs_collection
        self.state = NotifierState.UNSUBSCRIBED
        self.last_error: Optional[ChangeFeedError] = None
        self.events_seen = 0
        self._task: Optional[asyncio.Task] = None
        self._stream: Optional[AsyncIOMotorChangeStream] = None
        self._handlers: Dict[str, Handler] = {configs_collection: self._on_configs_changed}

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def watch(self) -> asyncio.Task:
        """Start watching in the background and return immediately."""
        if self._task is not None:
            return self._task
        self.state = NotifierState.WATCHING
        self._task = asyncio.create_task(self._watch_loop(), name=f"change-notifier:{self._collection.name}")
        return self._task

    async def _watch_loop(self) -> None:
        try:
            async with self._collection.watch() as stream:
                self._stream = stream
                logger.info("Watching change stream on %s", self._collection.name)
                async for change in stream:
                    await self.dispatch(change)
            logger.warning("Change stream on %s closed, notifications stopped", self._collection.name)
        except PyMongoError as e:
            self.last_error = ChangeFeedError(f"change stream on {self._collection.name} dropped: {e}")
            logger.error("Change stream on %s dropped, notifications stopped: %s", self._collection.name, e)
        except Exception as e:
            # undecodable events and other non-driver failures end the feed the same way
            self.last_error = ChangeFeedError(f"change stream on {self._collection.name} failed: {e}")
            logger.error(
                "Change stream on %s failed, notifications stopped: %s", self._collection.name, e, exc_info=True
            )
        finally:
            self._stream = None

    async def dispatch(self, raw: Optional[Mapping[str, Any]]) -> bool:
        """
        Decode one raw change document and run its handler.

        Returns:
            bool: `True` if a handler ran for the event.
        """
        event = ChangeEvent.from_raw(raw)
        if event is None:
            logger.debug("Dropping change event without namespace")
            return False

        self.events_seen += 1
        handler = self._handlers.get(event.collection)
        if handler is None:
            logger.debug("Other collection changed: %s (%s)", event.collection, event.operation_type)
            return False

        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Handler for %s changes failed: %s", event.collection, e, exc_info=True)
        return True

    def _on_configs_changed(self, event: ChangeEvent) -> Union[None, Awaitable[None]]:
        logger.info("%s collection changed (%s)", event.collection, event.operation_type)
        if self.listener is None:
            return None
        return self.listener.on_config_changed()

    async def stop(self) -> None:
        if self._stream is not None:
            try:
                await self._stream.close()
            except PyMongoError as e:
                logger.warning("Error closing change stream: %s", e)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Change notifier stopped")
