"""Synchronous key/value storage backends for durable session state."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import RLock
from typing import Dict, Optional, Protocol
from urllib.parse import quote

from screentech.agent.errors import StorageError
from screentech.app.config import Settings
from screentech.database.clients import DatabaseClients

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryStorage:
    """Process-local storage; contents vanish with the process."""

    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class FileStorage:
    """One file per key under a directory, written with an atomic replace."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Could not read {key!r}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"Could not write {key!r}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not remove {key!r}: {exc}") from exc


class SupabaseStorage:
    """Key/value rows in a Supabase table with ``key`` (primary) and ``value`` columns."""

    def __init__(self, clients: DatabaseClients, table: str = "kv_store") -> None:
        self.clients = clients
        self.table = table

    def get(self, key: str) -> Optional[str]:
        try:
            response = (
                self.clients.supabase.table(self.table)
                .select("value")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise StorageError(f"Could not read {key!r}: {exc}") from exc
        if not response.data:
            return None
        return response.data[0]["value"]

    def set(self, key: str, value: str) -> None:
        try:
            self.clients.supabase.table(self.table).upsert({"key": key, "value": value}).execute()
        except Exception as exc:
            raise StorageError(f"Could not write {key!r}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self.clients.supabase.table(self.table).delete().eq("key", key).execute()
        except Exception as exc:
            raise StorageError(f"Could not remove {key!r}: {exc}") from exc


def build_storage(config: Settings) -> KeyValueStorage:
    if config.storage_backend == "supabase":
        logger.info("Using Supabase storage (table=%s)", config.supabase_table)
        return SupabaseStorage(DatabaseClients(config), table=config.supabase_table)
    if config.storage_backend == "memory":
        logger.warning("Using in-memory storage; session history will not survive a restart")
        return InMemoryStorage()
    logger.info("Using file storage at %s", config.storage_dir)
    return FileStorage(config.storage_dir)
