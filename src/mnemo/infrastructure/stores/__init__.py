# Infrastructure Card Store Adapters Package
from .memory_store import InMemoryCardStore
from .sql_store import SqlCardStore

__all__ = ["InMemoryCardStore", "SqlCardStore"]
