"""
Entity store backends.

    from ledger.store import build_store
    store = build_store("mongo", mongo_url=..., db_name=...)
"""
from .base import EntityStore
from .memory import InMemoryEntityStore
from .mongo import MongoEntityStore


def build_store(backend: str, mongo_url: str = None, db_name: str = None, max_retries: int = None) -> EntityStore:
    """Create the configured store backend ("mongo" or "memory")."""
    if backend == "memory":
        return InMemoryEntityStore()
    if backend == "mongo":
        return MongoEntityStore.from_url(mongo_url, db_name, max_retries=max_retries)
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = ["EntityStore", "InMemoryEntityStore", "MongoEntityStore", "build_store"]
