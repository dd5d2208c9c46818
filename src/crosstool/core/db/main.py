import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List

from peewee import SqliteDatabase

from crosstool.core.constants import INITIAL_ITEMS
from crosstool.core.errors import ValidationError
from crosstool.core.models import ItemDTO, MutationResult
from .models import Item

logger = logging.getLogger("crosstool.db")


def normalize_name(name: object) -> str:
    text = str(name or "").strip()
    if not text:
        raise ValidationError("Item name cannot be empty")
    return text


def normalize_item_id(item_id: object) -> int:
    if isinstance(item_id, bool) or item_id is None:
        raise ValidationError("Item ID is required")
    if isinstance(item_id, str):
        item_id = item_id.strip()
        if not item_id:
            raise ValidationError("Item ID is required")
    try:
        value = int(item_id)
    except (TypeError, ValueError):
        raise ValidationError(f"Item ID must be an integer (got={item_id!r})")
    if value <= 0:
        raise ValidationError(f"Item ID must be positive (got={value})")
    return value


def format_timestamp(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


class ItemStore(ABC):
    """
    Storage backend for the ``items`` table.

    Mutations on missing rows report ``changes == 0`` instead of raising, so
    delete is idempotent and update on an unknown id is a visible no-op.
    """

    backend: str = ""
    persistent: bool = True
    path: str = ""

    @abstractmethod
    def initialize(self, seed: bool = False) -> MutationResult: ...

    @abstractmethod
    def is_initialized(self) -> bool: ...

    @abstractmethod
    def list_items(self) -> List[ItemDTO]: ...

    @abstractmethod
    def add_item(self, name: str) -> MutationResult: ...

    @abstractmethod
    def update_item(self, item_id: object, name: str) -> MutationResult: ...

    @abstractmethod
    def delete_item(self, item_id: object) -> MutationResult: ...

    @abstractmethod
    def clear(self) -> MutationResult: ...

    def close(self) -> None:
        return None

    def info(self) -> dict[str, object]:
        return {
            "backend": self.backend,
            "persistent": bool(self.persistent),
            "path": self.path,
            "initialized": self.is_initialized(),
        }


class SqliteItemStore(ItemStore):
    """
    SQLite 파일 기반 항목 저장소입니다.
    Peewee ORM을 사용하며, 쓰기 작업은 단일 락으로 직렬화합니다.
    """

    backend = "sqlite"
    persistent = True

    def __init__(self, db_path: str, journal_mode: str = "wal"):
        self.path = str(db_path)
        self._lock = threading.Lock()
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.db = SqliteDatabase(self.path, pragmas={
                "journal_mode": journal_mode,
                "synchronous": 1,
                "busy_timeout": 5000,
            })
            self.db.connect(reuse_if_open=True)
        except Exception as e:
            logger.error("Failed to open item store at %s: %s", self.path, e, exc_info=True)
            raise

    def _ensure_schema(self) -> None:
        self.db.create_tables([Item], safe=True)

    def initialize(self, seed: bool = False) -> MutationResult:
        with self._lock, self.db.bind_ctx([Item]):
            with self.db.atomic():
                self.db.drop_tables([Item], safe=True)
                self.db.create_tables([Item])
                if seed:
                    Item.insert_many([{"name": n} for n in INITIAL_ITEMS]).execute()
        added = len(INITIAL_ITEMS) if seed else 0
        logger.info("Database initialized (path=%s, seeded=%d)", self.path, added)
        message = "Database initialized successfully"
        if added:
            message += f"; added {added} initial items"
        return MutationResult(success=True, message=message, changes=added)

    def is_initialized(self) -> bool:
        return bool(self.db.table_exists(Item._meta.table_name))

    def list_items(self) -> List[ItemDTO]:
        with self._lock, self.db.bind_ctx([Item]):
            self._ensure_schema()
            rows = Item.select().order_by(Item.id)
            return [
                ItemDTO(id=row.id, name=row.name, created_at=format_timestamp(row.created_at))
                for row in rows
            ]

    def add_item(self, name: str) -> MutationResult:
        text = normalize_name(name)
        with self._lock, self.db.bind_ctx([Item]):
            self._ensure_schema()
            new_id = int(Item.insert(name=text).execute())
        return MutationResult(
            success=True,
            message=f"Item added successfully with ID: {new_id}",
            changes=1,
            id=new_id,
        )

    def update_item(self, item_id: object, name: str) -> MutationResult:
        target = normalize_item_id(item_id)
        text = normalize_name(name)
        with self._lock, self.db.bind_ctx([Item]):
            self._ensure_schema()
            changes = int(Item.update(name=text).where(Item.id == target).execute())
        if changes > 0:
            return MutationResult(message=f"Item with ID {target} updated successfully", changes=changes, id=target)
        return MutationResult(message=f"No item found with ID {target}", changes=0, id=target)

    def delete_item(self, item_id: object) -> MutationResult:
        target = normalize_item_id(item_id)
        with self._lock, self.db.bind_ctx([Item]):
            self._ensure_schema()
            changes = int(Item.delete().where(Item.id == target).execute())
        if changes > 0:
            return MutationResult(message=f"Item with ID {target} removed successfully", changes=changes, id=target)
        return MutationResult(message=f"No item found with ID {target}", changes=0, id=target)

    def clear(self) -> MutationResult:
        with self._lock, self.db.bind_ctx([Item]):
            self._ensure_schema()
            changes = int(Item.delete().execute())
        return MutationResult(message=f"Cleared {changes} items from the database", changes=changes)

    def close(self) -> None:
        try:
            if not self.db.is_closed():
                self.db.close()
        except Exception:
            logger.debug("Item store close failed", exc_info=True)


def create_item_store(settings_obj: object) -> ItemStore:
    """Build the backend named by ``STORAGE_BACKEND``.

    There is no silent fallback: an unknown backend or an unopenable SQLite
    file raises, and the memory backend is announced with a warning.
    """
    from .memory import MemoryItemStore

    backend = str(getattr(settings_obj, "STORAGE_BACKEND", "sqlite") or "sqlite").strip().lower()
    if backend == "sqlite":
        return SqliteItemStore(str(getattr(settings_obj, "db_path")))
    if backend == "memory":
        logger.warning("Using in-memory item store; data will NOT persist across restarts")
        return MemoryItemStore()
    raise ValidationError(f"Unknown storage backend: {backend!r}", hint="use 'sqlite' or 'memory'")
