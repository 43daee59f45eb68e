"""Loader for versioned seed assets.

Assets are decoded as UTF-8 and stored verbatim; their contents are never parsed here.
"""

from pathlib import Path
from typing import Dict, Union

from health_storage.database.errors import SeedGenerationError
from health_storage.managers.logging_manager import get_logger

logger = get_logger(prefix="[SeedAssets]")


class SeedAssetLoader:
    """Reads named seed assets from a directory, caching each one after the first read."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self._cache: Dict[str, str] = {}

    def load(self, name: str) -> str:
        """
        Return the text of asset `name`, decoded as UTF-8.

        Raises:
            SeedGenerationError: If the asset is missing, unreadable, or not valid UTF-8.
        """
        if name in self._cache:
            return self._cache[name]

        path = self.base_dir / name
        try:
            data = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SeedGenerationError(f"cannot read seed asset {name!r} from {self.base_dir}: {e}") from e

        logger.debug("Loaded seed asset %s (%d bytes)", path, len(data))
        self._cache[name] = data
        return data
