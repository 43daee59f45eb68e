"""Command-line tools for operating the storage layer."""
