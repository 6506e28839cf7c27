"""
esante_db/store.py

Key -> JSON document persistence.

Two layers:
- a back end with the platform contract (get_item / set_item / remove_item on
  raw strings): SQL table, JSON files on disk, or process memory
- StoreAdapter, which (de)serializes and turns every failure into
  "absent" on read and an Outcome on write
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from esante_db.errors import Outcome, StorageUnavailable
from esante_db.models import StoreEntry

logger = logging.getLogger(__name__)


# ============================================================
# Keys
# ============================================================

USERS = "users"
PATIENTS = "patients"
APPOINTMENTS = "appointments"
TREATMENTS = "treatments"
MEDICAL_RECORDS = "medicalRecords"

USER_TOKEN = "userToken"
CURRENT_USER = "currentUser"


# ============================================================
# Back ends
# ============================================================

class KeyValueBackend:
    """Durable string store. Implementations raise StorageUnavailable on I/O failure."""

    async def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove_item(self, key: str) -> None:
        raise NotImplementedError


class MemoryBackend(KeyValueBackend):
    """Process-local store. Every call yields to the event loop once."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        await asyncio.sleep(0)
        self.items.pop(key, None)


class JsonFileBackend(KeyValueBackend):
    """One <key>.json file per key under ``folder``."""

    def __init__(self, folder: Path) -> None:
        self.folder = Path(folder)

    def _path(self, key: str) -> Path:
        return self.folder / f"{key}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str) -> None:
        self.folder.mkdir(parents=True, exist_ok=True)
        # write then rename so a crash never leaves half a document
        tmp = self._path(key).with_suffix(".json.tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(self._path(key))

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def get_item(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._read, key)
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {key}: {e}") from e

    async def set_item(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {key}: {e}") from e

    async def remove_item(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove, key)
        except OSError as e:
            raise StorageUnavailable(f"Cannot remove {key}: {e}") from e


class SQLBackend(KeyValueBackend):
    """
    Rows of the store_entries table (see esante_db/models.py).
    Blocking session work runs in a worker thread.
    """

    def __init__(self, session_factory=None) -> None:
        if session_factory is None:
            from esante_db.relational import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def _read(self, key: str) -> Optional[str]:
        with self.session_factory() as session:
            entry = session.get(StoreEntry, key)
            return entry.value if entry is not None else None

    def _write(self, key: str, value: str) -> None:
        with self.session_factory() as session:
            entry = session.get(StoreEntry, key)
            if entry is None:
                session.add(StoreEntry(key=key, value=value))
            else:
                entry.value = value
            session.commit()

    def _remove(self, key: str) -> None:
        with self.session_factory() as session:
            entry = session.get(StoreEntry, key)
            if entry is not None:
                session.delete(entry)
                session.commit()

    async def get_item(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._read, key)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Cannot read {key}: {e}") from e

    async def set_item(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Cannot write {key}: {e}") from e

    async def remove_item(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove, key)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Cannot remove {key}: {e}") from e


# ============================================================
# Adapter
# ============================================================

_MISSING = object()


class StoreAdapter:
    """
    get/set of whole JSON documents by key.

    Reads never raise: a missing, unreadable or corrupt value comes back as
    the default (an empty list). Writes report failure through an Outcome.
    There is no locking unless a caller takes ``lock_for(key)``.
    """

    def __init__(self, backend: KeyValueBackend) -> None:
        self.backend = backend
        self._locks: Dict[str, asyncio.Lock] = {}

    async def read(self, key: str) -> Outcome[Any]:
        """Read ``key``; value is None when the key was never written."""
        try:
            raw = await self.backend.get_item(key)
        except StorageUnavailable as e:
            logger.exception("Store read failed (key=%s)", key)
            return Outcome.failure(e)
        if raw is None:
            return Outcome.success(None)
        try:
            return Outcome.success(json.loads(raw))
        except json.JSONDecodeError as e:
            logger.error("Corrupt value under %s, treating it as absent: %s", key, e)
            return Outcome.failure(StorageUnavailable(f"Corrupt value under {key}: {e}"))

    async def get(self, key: str, default: Any = _MISSING) -> Any:
        if default is _MISSING:
            default = []
        result = await self.read(key)
        if not result.ok or result.value is None:
            return default
        return result.value

    async def set(self, key: str, value: Any) -> Outcome[None]:
        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error("Value for %s is not JSON serializable: %s", key, e)
            return Outcome.failure(StorageUnavailable(f"Cannot serialize {key}: {e}"))
        try:
            await self.backend.set_item(key, raw)
        except StorageUnavailable as e:
            logger.exception("Store write failed (key=%s)", key)
            return Outcome.failure(e)
        return Outcome.success()

    async def remove(self, key: str) -> Outcome[None]:
        try:
            await self.backend.remove_item(key)
        except StorageUnavailable as e:
            logger.exception("Store remove failed (key=%s)", key)
            return Outcome.failure(e)
        return Outcome.success()

    def lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]
