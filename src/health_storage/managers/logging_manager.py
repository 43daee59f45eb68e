"""
# Logging Manager

Central logger factory for the storage layer. Every module obtains its logger through
`get_logger()`, optionally with a bracketed prefix that tags each message with the
subsystem that produced it (e.g. `[DATABASE]`, `[SeedRunner]`).

## Usage

```python
from health_storage.managers.logging_manager import get_logger

logger = get_logger(prefix="[DATABASE]")
logger.info("Connected to %s", database_name)
# 2026-10-16 10:00:00,000 - health_storage - INFO - [DATABASE] Connected to health
```

All loggers share a single stream handler attached to the `health_storage` root logger,
so calling `get_logger()` many times never duplicates output.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple, Union

ROOT_LOGGER_NAME = "health_storage"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


class PrefixedLoggerAdapter(logging.LoggerAdapter):
    """Prepends a fixed prefix to every message."""

    def __init__(self, logger: logging.Logger, prefix: str):
        super().__init__(logger, {"prefix": prefix})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"{self.prefix} {msg}", kwargs


def _configure_root(level: Union[int, str]) -> None:
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.propagate = False
        _configured = True
    root.setLevel(level)


def set_log_level(level: Union[int, str]) -> None:
    """Change the level of every storage logger at runtime."""
    _configure_root(level.upper() if isinstance(level, str) else level)


def get_logger(
    name: Optional[str] = None, prefix: Optional[str] = None
) -> Union[logging.Logger, PrefixedLoggerAdapter]:
    """
    Return a logger under the `health_storage` hierarchy.

    Args:
        name: Child logger name. Defaults to the package root logger.
        prefix: Optional tag prepended to every message.

    Returns:
        A `logging.Logger`, or a `PrefixedLoggerAdapter` when a prefix is given.
    """
    if not _configured:
        _configure_root(logging.INFO)

    if name and name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    logger = logging.getLogger(name or ROOT_LOGGER_NAME)

    if prefix:
        return PrefixedLoggerAdapter(logger, prefix)
    return logger
