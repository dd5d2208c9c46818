import threading
from datetime import datetime, timezone
from typing import List

from crosstool.core.constants import INITIAL_ITEMS
from crosstool.core.models import ItemDTO, MutationResult
from .main import ItemStore, normalize_item_id, normalize_name


class MemoryItemStore(ItemStore):
    """Non-persistent store. Reports ``persistent = False`` everywhere it is asked."""

    backend = "memory"
    persistent = False
    path = ":memory:"

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: list[dict] = []
        self._next_id = 1
        self._initialized = False

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _insert(self, name: str) -> int:
        new_id = self._next_id
        self._next_id += 1
        self._rows.append({"id": new_id, "name": name, "created_at": self._now()})
        return new_id

    def initialize(self, seed: bool = False) -> MutationResult:
        with self._lock:
            self._rows = []
            self._next_id = 1
            self._initialized = True
            if seed:
                for name in INITIAL_ITEMS:
                    self._insert(name)
        added = len(INITIAL_ITEMS) if seed else 0
        message = "Database initialized successfully"
        if added:
            message += f"; added {added} initial items"
        return MutationResult(message=message, changes=added)

    def is_initialized(self) -> bool:
        return self._initialized

    def list_items(self) -> List[ItemDTO]:
        with self._lock:
            return [ItemDTO(**row) for row in self._rows]

    def add_item(self, name: str) -> MutationResult:
        text = normalize_name(name)
        with self._lock:
            self._initialized = True
            new_id = self._insert(text)
        return MutationResult(message=f"Item added successfully with ID: {new_id}", changes=1, id=new_id)

    def update_item(self, item_id: object, name: str) -> MutationResult:
        target = normalize_item_id(item_id)
        text = normalize_name(name)
        with self._lock:
            for row in self._rows:
                if row["id"] == target:
                    row["name"] = text
                    return MutationResult(message=f"Item with ID {target} updated successfully", changes=1, id=target)
        return MutationResult(message=f"No item found with ID {target}", changes=0, id=target)

    def delete_item(self, item_id: object) -> MutationResult:
        target = normalize_item_id(item_id)
        with self._lock:
            before = len(self._rows)
            self._rows = [row for row in self._rows if row["id"] != target]
            changes = before - len(self._rows)
        if changes:
            return MutationResult(message=f"Item with ID {target} removed successfully", changes=changes, id=target)
        return MutationResult(message=f"No item found with ID {target}", changes=0, id=target)

    def clear(self) -> MutationResult:
        with self._lock:
            changes = len(self._rows)
            self._rows = []
        return MutationResult(message=f"Cleared {changes} items from the database", changes=changes)
