from .main import ItemStore, SqliteItemStore, create_item_store
from .memory import MemoryItemStore

__all__ = ["ItemStore", "SqliteItemStore", "MemoryItemStore", "create_item_store"]
