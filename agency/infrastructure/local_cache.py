from __future__ import annotations

import json
import logging
import os
import sqlite3
from threading import RLock
from typing import Any, Dict, List

from agency.errors import StoreUnavailableError


LOGGER = logging.getLogger("agency")

PORTFOLIO_KEY = "portfolio"

LOCAL_CACHE_DDL = """
CREATE TABLE IF NOT EXISTS local_cache (
    cache_key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


def cache_key(name: str, owner_id: str | None) -> str:
    owner = str(owner_id or "").strip()
    return f"{name}_{owner}" if owner else name


class LocalCache:
    """Per-user key/value fallback storage; values are JSON lists of documents."""

    def get_raw(self, key: str) -> str | None:
        raise NotImplementedError

    def set_raw(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def read_list(self, key: str) -> List[Dict[str, Any]]:
        raw = self.get_raw(key)
        if raw is None or raw == "":
            return []
        try:
            value = json.loads(raw)
        except ValueError:
            LOGGER.warning("local_cache_corrupt_entry", extra={"cache_key": key})
            return []
        if not isinstance(value, list):
            LOGGER.warning("local_cache_corrupt_entry", extra={"cache_key": key})
            return []
        return [item for item in value if isinstance(item, dict)]

    def write_list(self, key: str, items: List[Dict[str, Any]]) -> None:
        self.set_raw(key, json.dumps(list(items), ensure_ascii=False, default=str))

    def upsert(self, key: str, item: Dict[str, Any], *, id_field: str = "id") -> List[Dict[str, Any]]:
        items = self.read_list(key)
        item_id = item.get(id_field)
        replaced = False
        for index, existing in enumerate(items):
            if item_id not in (None, "") and existing.get(id_field) == item_id:
                items[index] = dict(item)
                replaced = True
                break
        if not replaced:
            items.append(dict(item))
        self.write_list(key, items)
        return items

    def append(self, key: str, item: Dict[str, Any]) -> List[Dict[str, Any]]:
        items = self.read_list(key)
        items.append(dict(item))
        self.write_list(key, items)
        return items

    def discard(self, key: str, item_id: str, *, id_field: str = "id") -> None:
        items = self.read_list(key)
        remaining = [item for item in items if item.get(id_field) != item_id]
        if len(remaining) != len(items):
            self.write_list(key, remaining)


class InMemoryLocalCache(LocalCache):
    def __init__(self) -> None:
        self._lock = RLock()
        self._values: Dict[str, str] = {}

    def get_raw(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set_raw(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._values)


class SqliteLocalCache(LocalCache):
    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = RLock()
        directory = os.path.dirname(os.path.abspath(path))
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._execute(LOCAL_CACHE_DDL)

    def _execute(self, sql: str, params: tuple = ()):
        with self._lock:
            try:
                conn = sqlite3.connect(self.path, timeout=30.0)
            except sqlite3.Error as exc:
                raise StoreUnavailableError(code="local_cache_unavailable", details=str(exc)) from exc
            try:
                rows = conn.execute(sql, params).fetchall()
                conn.commit()
                return rows
            except sqlite3.Error as exc:
                raise StoreUnavailableError(code="local_cache_unavailable", details=str(exc)) from exc
            finally:
                conn.close()

    def get_raw(self, key: str) -> str | None:
        rows = self._execute("SELECT value FROM local_cache WHERE cache_key = ?", (key,))
        return rows[0][0] if rows else None

    def set_raw(self, key: str, value: str) -> None:
        self._execute(
            """
            INSERT INTO local_cache (cache_key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (cache_key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value),
        )

    def remove(self, key: str) -> None:
        self._execute("DELETE FROM local_cache WHERE cache_key = ?", (key,))


def build_local_cache(config) -> LocalCache:
    backend = str(config.get("LOCAL_CACHE_BACKEND") or "sqlite").strip().lower()
    if backend == "memory":
        return InMemoryLocalCache()
    return SqliteLocalCache(config["LOCAL_CACHE_PATH"])
