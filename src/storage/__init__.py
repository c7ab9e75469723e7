"""Storage layer - file-backed JSON state documents."""

from src.storage.json_store import JsonDocumentStore, PersistenceError

__all__ = ["JsonDocumentStore", "PersistenceError"]
