"""
# Configuration Management Module

Configuration for the health storage layer, built on **Pydantic Settings**.

## Loading Hierarchy

Higher layers override lower layers:

1. **Environment variables** (e.g. `export MONGODB_URL="mongodb://db:27017"`)
2. **`HEALTH_STORAGE_CONFIG_PATH`**: explicit config file path
3. **`.health` file** in the project root
4. **`.env` file** in the project root
5. **Defaults** declared on `Settings`

If no file is found the settings are read from the environment only.

## Storage Settings

- `MONGODB_URL`: connection string, must not be empty.
- `MONGODB_DATABASE`: database holding every provisioned collection.
- `MONGODB_TIMEOUT`: seconds allowed for *each* of the connect and ping phases.
- `MONGODB_USERNAME` / `MONGODB_PASSWORD`: optional credentials injected into the URL.
- `SEED_DATA_DIR`: directory holding versioned seed assets. Defaults to the
  assets shipped inside the package.
- `CONFIGS_COLLECTION`: collection whose changes trigger `on_config_changed()`.
- `CHANGE_FEED_ENABLED`: disable to skip the change-stream watcher (standalone servers
  do not support change streams).
- `LOG_LEVEL`: level applied to every storage logger.

## Usage

```python
from health_storage.config import settings

print(settings.MONGODB_DATABASE)
print(settings.redacted_mongodb_url)
```
"""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
HEALTH_FILENAME: str = ".health"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "HEALTH_STORAGE_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent
PACKAGE_SEED_DATA_DIR: Path = Path(__file__).resolve().parent / "seed_data"


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determine the configuration file path.

    Checks, in order: the `HEALTH_STORAGE_CONFIG_PATH` environment variable, a `.health`
    file in the project root, then a `.env` file in the project root.

    Returns:
        Optional[str]: Path to the configuration file, or `None` for environment-only mode.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    health_path: Path = PROJECT_ROOT / HEALTH_FILENAME
    if health_path.exists():
        return str(health_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


class Settings(BaseSettings):
    """
    Storage layer configuration settings.

    **Configuration Groups:**
    *   **Database**: MongoDB connection details and the connect/ping timeout.
    *   **Seeding**: Location of the versioned seed assets.
    *   **Change feed**: Watched configuration collection and feature toggle.
    *   **Logging**: Level for the storage loggers.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "health"
    MONGODB_TIMEOUT: int = 10  # seconds, applied separately to connect and ping

    # Authentication (optional)
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Seed assets
    SEED_DATA_DIR: Optional[str] = None

    # Change feed
    CONFIGS_COLLECTION: str = "configs"
    CHANGE_FEED_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"

    @field_validator("MONGODB_URL", "MONGODB_DATABASE", mode="before")
    @classmethod
    def no_empty_values(cls, v: Any, info: Any) -> Any:
        """
        Validates that connection values are not empty.

        Raises:
            ValueError: If the value is empty or whitespace.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .health and not empty!")
        return v

    @field_validator("MONGODB_TIMEOUT", mode="before")
    @classmethod
    def validate_timeout_values(cls, v: Any, info: Any) -> int:
        """
        Validates that the timeout is within a reasonable range (1-300 seconds).

        Raises:
            ValueError: If the timeout is out of range.
        """
        timeout = int(v)
        if timeout < 1 or timeout > 300:
            raise ValueError(f"{info.field_name} must be between 1 and 300 seconds")
        return timeout

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        level = str(v).upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported LOG_LEVEL: {v}")
        return level

    @property
    def mongodb_connection_string(self) -> str:
        """
        Connection string with credentials injected when both username and password are set.
        """
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            password = self.MONGODB_PASSWORD.get_secret_value()
            scheme, _, rest = self.MONGODB_URL.partition("://")
            return f"{scheme}://{self.MONGODB_USERNAME}:{password}@{rest}"
        return self.MONGODB_URL

    @property
    def redacted_mongodb_url(self) -> str:
        """The configured URL with any credentials stripped, safe for logging."""
        return redact_url(self.MONGODB_URL)

    @property
    def seed_data_path(self) -> Path:
        if self.SEED_DATA_DIR:
            return Path(self.SEED_DATA_DIR)
        return PACKAGE_SEED_DATA_DIR


def redact_url(url: str) -> str:
    """Strip the `user:password@` part of a MongoDB URL."""
    scheme, sep, rest = url.partition("://")
    if not sep:
        return url.split("@")[-1]
    return f"{scheme}://{rest.split('@')[-1]}"


# Global settings instance
settings: Settings = Settings()
