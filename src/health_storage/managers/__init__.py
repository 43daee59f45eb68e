"""Cross-cutting managers shared by the storage layer."""
