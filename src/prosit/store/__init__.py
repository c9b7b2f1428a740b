from .base import Store
from .memory import MemoryStore
from .sql import SQLStore

__all__ = ["Store", "MemoryStore", "SQLStore"]
