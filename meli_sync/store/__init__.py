"""Persistence for orders, credentials and tracked products."""

from meli_sync.store.memory import InMemoryStore
from meli_sync.store.protocol import OrderStore

__all__ = ["InMemoryStore", "OrderStore", "build_store"]


def build_store(database_url: str) -> OrderStore:
    """Postgres when a DSN is configured, otherwise the in-memory store."""
    if database_url:
        from meli_sync.store.postgres import PostgresStore

        store = PostgresStore(database_url)
        store.init_tables()
        return store
    return InMemoryStore()
