"""Rebuild Meilisearch indexes one entity type at a time."""

__version__ = "0.1.0"
