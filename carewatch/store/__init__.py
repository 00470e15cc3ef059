"""Real-time shared document/event stores."""

from carewatch.core.config import StoreConfig
from carewatch.store.base import BaseStore, DocumentStore
from carewatch.store.broadcast import Broadcaster, Subscription
from carewatch.store.memory import InMemoryStore
from carewatch.store.sqlite import SqliteStore


def create_store(config: StoreConfig) -> BaseStore:
    match config.backend:
        case "memory":
            return InMemoryStore(tenant=config.tenant)
        case "sqlite":
            return SqliteStore(db_path=config.db_path, tenant=config.tenant)
        case _:
            raise ValueError(f"Unknown store backend: {config.backend}")


__all__ = [
    "BaseStore",
    "Broadcaster",
    "DocumentStore",
    "InMemoryStore",
    "SqliteStore",
    "Subscription",
    "create_store",
]
