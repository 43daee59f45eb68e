"""
# Database Package

The `health_storage.database` package brings the MongoDB storage layer of the health
service into a consistent, query-ready state on every process start. It is built on
**Motor** (async MongoDB driver).

## Package Architecture

- **`connection`**: bounded connect and ping, distinct error per failure kind.
- **`provisioner`**: idempotent index application per `CollectionDescriptor`.
- **`seeding`**: seed-if-absent and pruning of finalized records.
- **`catalog`**: the declarative list of collections, in provisioning order.
- **`change_notifier`**: change-stream watcher notifying the injected listener.
- **`manager`**: the `StorageManager` facade with `start()` / `stop()` and typed accessors.

## Usage

```python
from health_storage.config import settings
from health_storage.database import StorageManager

storage = StorageManager(settings, listener=my_listener)
await storage.start()
symptoms = await storage.symptoms.find_one({"app_version": "2.6"})
await storage.stop()
```

There is no module-level singleton: the application creates one `StorageManager`
and passes it to whoever needs it.
"""

from health_storage.database.change_notifier import ChangeNotifier, StorageListener
from health_storage.database.manager import StorageManager

__all__ = ["ChangeNotifier", "StorageListener", "StorageManager"]
