"""
# Health Storage

Storage bootstrap for the health tracking service: connects to MongoDB, ensures every
collection carries its indexes, applies one-time seed data and startup cleanups, and
watches the configuration collection for live changes.

## Package Layout

- **`config`**: Pydantic Settings loaded from the environment or a config file.
- **`database`**: connection, provisioning, seeding, change notification and the
  `StorageManager` facade.
- **`models`**: catalog primitives, change events and seeded document models.
- **`managers.logging_manager`**: prefixed loggers shared by every module.
- **`cli`**: operator commands to provision or verify a database.
"""

__version__ = "1.0.0"
