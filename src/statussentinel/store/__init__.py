"""Result stores for probe results and incidents."""

from statussentinel.store.base import ResultStore, StoreError
from statussentinel.store.memory import MemoryResultStore
from statussentinel.store.sql import SQLResultStore

__all__ = ["MemoryResultStore", "ResultStore", "SQLResultStore", "StoreError"]
