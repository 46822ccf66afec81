"""Persistence of people, trees and circles on top of a key/value store.

All users share one key per collection; records are filtered by ``userId``
on load and merged with the other users' records on save.
"""

import logging
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

import config
from errors import PersistenceError
from models import ArchiveModel, Circle, FamilyTree, PersonNode

logger = logging.getLogger("familyarchive.store")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


# ============================================================================
# Key/Value Backends
# ============================================================================

class MemoryKeyValueStore:
    """In-process store with an optional total size quota (in characters)."""

    def __init__(self, capacity: int | None = None):
        self.capacity = capacity
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.capacity is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self.capacity:
                raise PersistenceError(
                    f"Storage quota exceeded writing '{key}' "
                    f"({used + len(value)} of {self.capacity} characters)"
                )
        self._data[key] = value


class JsonFileKeyValueStore:
    """One JSON file per key inside a directory."""

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory or config.STORE_DIR)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Could not read '{key}' from {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(value, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Could not write '{key}' to {path}: {e}") from e


# ============================================================================
# Archive Collections
# ============================================================================

class ArchiveStore:
    """Load and save a user's persons, family trees and circles."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _load_all(self, key: str, model: type[ArchiveModel]) -> list[ArchiveModel]:
        raw = self.store.get(key)
        if not raw:
            return []
        try:
            return TypeAdapter(list[model]).validate_json(raw)
        except ValidationError as e:
            raise PersistenceError(f"Stored data under '{key}' is not valid: {e}") from e

    def _load(self, key: str, model: type[ArchiveModel], user_id: str) -> list:
        records = [record for record in self._load_all(key, model) if record.user_id == user_id]
        logger.debug(f"Loaded {len(records)} records from '{key}' for user {user_id}")
        return records

    def _save(self, key: str, model: type[ArchiveModel], user_id: str, records: list) -> None:
        others = [record for record in self._load_all(key, model) if record.user_id != user_id]
        payload = TypeAdapter(list[model]).dump_json(others + list(records), by_alias=True)
        self.store.set(key, payload.decode("utf-8"))
        logger.info(f"Saved {len(records)} records to '{key}' for user {user_id}")

    def load_persons(self, user_id: str) -> list[PersonNode]:
        return self._load(config.STORAGE_KEYS["profiles"], PersonNode, user_id)

    def save_persons(self, user_id: str, persons: list[PersonNode]) -> None:
        self._save(config.STORAGE_KEYS["profiles"], PersonNode, user_id, persons)

    def load_trees(self, user_id: str) -> list[FamilyTree]:
        return self._load(config.STORAGE_KEYS["family_trees"], FamilyTree, user_id)

    def save_trees(self, user_id: str, trees: list[FamilyTree]) -> None:
        self._save(config.STORAGE_KEYS["family_trees"], FamilyTree, user_id, trees)

    def load_circles(self, user_id: str) -> list[Circle]:
        return self._load(config.STORAGE_KEYS["circles"], Circle, user_id)

    def save_circles(self, user_id: str, circles: list[Circle]) -> None:
        self._save(config.STORAGE_KEYS["circles"], Circle, user_id, circles)
