"""
Command-line interface for storage provisioning.

Runs the same startup sequence the service runs, without serving anything, so
operators can prepare or inspect a database ahead of a deployment.

    health-storage provision     # connect, ensure indexes, prune, seed, disconnect
    health-storage verify        # report missing or conflicting indexes
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from health_storage.config import Settings, settings
from health_storage.database.catalog import COLLECTION_DESCRIPTORS
from health_storage.database.connection import connect
from health_storage.database.errors import StorageError
from health_storage.database.manager import StorageManager
from health_storage.database.provisioner import verify
from health_storage.managers.logging_manager import get_logger

logger = get_logger(prefix="[StorageCLI]")


class StorageCLI:
    """CLI tool for storage provisioning operations."""

    def __init__(self, config: Settings):
        self.config = config

    async def provision(self) -> bool:
        """
        Run the full startup sequence once and print the report.

        Returns:
            True if successful, False otherwise
        """
        # the change feed is useless for a one-shot run
        storage = StorageManager(self.config.model_copy(update={"CHANGE_FEED_ENABLED": False}))
        try:
            report = await storage.start()
        except StorageError as e:
            logger.error("Provisioning failed: %s", e)
            return False

        try:
            print(json.dumps(report.model_dump(mode="json"), indent=2))
        finally:
            await storage.stop()
        return True

    async def verify(self) -> bool:
        """
        Compare declared and actual indexes without changing anything.

        Returns:
            True if every declared index is present and consistent
        """
        try:
            connection = await connect(
                self.config.mongodb_connection_string,
                self.config.MONGODB_DATABASE,
                self.config.MONGODB_TIMEOUT,
            )
        except StorageError as e:
            logger.error("Verification failed: %s", e)
            return False

        ok = True
        try:
            for descriptor in COLLECTION_DESCRIPTORS:
                report = await verify(connection.collection(descriptor.name), descriptor)
                ok = ok and report.ok
                print(json.dumps(report.model_dump(mode="json")))
        except StorageError as e:
            logger.error("Verification failed: %s", e)
            ok = False
        finally:
            connection.close()
        return ok


def main(argv: Optional[list[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Health storage provisioning CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        help="MongoDB connection string (default: MONGODB_URL setting)",
    )
    parser.add_argument(
        "--database",
        help="Database name (default: MONGODB_DATABASE setting)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    subparsers.add_parser("provision", help="Ensure indexes, prune and seed every collection")
    subparsers.add_parser("verify", help="Report missing or conflicting indexes")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    overrides = {}
    if args.url:
        overrides["MONGODB_URL"] = args.url
    if args.database:
        overrides["MONGODB_DATABASE"] = args.database
    cli = StorageCLI(settings.model_copy(update=overrides))

    if args.command == "provision":
        success = asyncio.run(cli.provision())
    elif args.command == "verify":
        success = asyncio.run(cli.verify())
    else:
        parser.print_help()
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
