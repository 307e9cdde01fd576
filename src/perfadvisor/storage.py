"""
Pluggable durable key-value storage for persisted snapshots.
"""

import json
import re
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from .config import MONITORING
from .error_handling import PersistenceError, StorageQuotaExceededError

logger = logging.getLogger(__name__)

CACHE_DIR_NAME = ".perfadvisor_cache"


def _default_cache_dir() -> Path:
    cache_dir = Path.home() / CACHE_DIR_NAME
    cache_dir.mkdir(exist_ok=True)
    return cache_dir


class KeyValueStorage(ABC):
    """Abstract base class for durable string storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: str):
        """Store ``value`` under ``key``, replacing any previous value."""
        pass

    @abstractmethod
    def remove(self, key: str):
        """Delete ``key``; missing keys are ignored."""
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        pass


class InMemoryStorage(KeyValueStorage):
    """
    Dict-backed storage with an optional byte quota.
    Suitable for development and testing.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self.data: Dict[str, str] = {}
        self.lock = threading.RLock()
        self.total_writes = 0

    def _size_with(self, key: str, value: str) -> int:
        size = sum(len(k) + len(v) for k, v in self.data.items() if k != key)
        return size + len(key) + len(value)

    def get(self, key: str) -> Optional[str]:
        with self.lock:
            return self.data.get(key)

    def set(self, key: str, value: str):
        with self.lock:
            if self.quota_bytes is not None:
                needed = self._size_with(key, value)
                if needed > self.quota_bytes:
                    raise StorageQuotaExceededError(
                        f"Writing {key} needs {needed} bytes, quota is {self.quota_bytes}",
                        context={"key": key},
                    )
            self.data[key] = value
            self.total_writes += 1

    def remove(self, key: str):
        with self.lock:
            self.data.pop(key, None)

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "backend": "memory",
                "keys": len(self.data),
                "bytes": sum(len(k) + len(v) for k, v in self.data.items()),
                "quota_bytes": self.quota_bytes,
                "total_writes": self.total_writes,
            }


class SQLiteStorage(KeyValueStorage):
    """
    SQLite-based storage for snapshots that outlive the process.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        quota_bytes: Optional[int] = None,
    ):
        """
        Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database (defaults to ~/.perfadvisor_cache/storage.db)
            quota_bytes: Maximum bytes across all stored values (None for unlimited)
        """
        if db_path is None:
            db_path = _default_cache_dir() / "storage.db"

        self.db_path = Path(db_path)
        self.quota_bytes = quota_bytes
        self.lock = threading.RLock()
        self.total_writes = 0

        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}", cause=e) from e

    def _init_db(self):
        """Initialize database schema."""
        with self.lock:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                conn.commit()
            finally:
                conn.close()

    def get(self, key: str) -> Optional[str]:
        with self.lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
                return row[0] if row else None
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot read {key}", cause=e) from e
            finally:
                conn.close()

    def set(self, key: str, value: str):
        with self.lock:
            conn = self._connect()
            try:
                if self.quota_bytes is not None:
                    row = conn.execute(
                        "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) "
                        "FROM kv_store WHERE key != ?",
                        (key,),
                    ).fetchone()
                    needed = row[0] + len(key) + len(value)
                    if needed > self.quota_bytes:
                        raise StorageQuotaExceededError(
                            f"Writing {key} needs {needed} bytes, quota is {self.quota_bytes}",
                            context={"key": key, "db_path": str(self.db_path)},
                        )

                conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, time.time()),
                )
                conn.commit()
                self.total_writes += 1
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot write {key}", cause=e) from e
            finally:
                conn.close()

    def remove(self, key: str):
        with self.lock:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot remove {key}", cause=e) from e
            finally:
                conn.close()

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            conn = self._connect()
            try:
                row = conn.execute("""
                    SELECT
                        COUNT(*) as count,
                        COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) as bytes,
                        MAX(updated_at) as newest
                    FROM kv_store
                """).fetchone()

                db_size = self.db_path.stat().st_size if self.db_path.exists() else 0

                return {
                    "backend": "sqlite",
                    "db_path": str(self.db_path),
                    "keys": row[0],
                    "bytes": row[1],
                    "last_updated": row[2],
                    "db_size_mb": db_size / (1024 * 1024),
                    "quota_bytes": self.quota_bytes,
                    "total_writes": self.total_writes,
                }
            finally:
                conn.close()


class JSONFileStorage(KeyValueStorage):
    """One JSON document per key inside a directory."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory else _default_cache_dir()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()
        self.total_writes = 0

    def _path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        with self.lock:
            if not path.exists():
                return None
            try:
                return path.read_text(encoding="utf-8")
            except OSError as e:
                raise PersistenceError(f"Cannot read {path}", cause=e) from e

    def set(self, key: str, value: str):
        path = self._path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        with self.lock:
            try:
                tmp_path.write_text(value, encoding="utf-8")
                tmp_path.replace(path)
                self.total_writes += 1
            except OSError as e:
                raise PersistenceError(f"Cannot write {path}", cause=e) from e

    def remove(self, key: str):
        with self.lock:
            self._path_for(key).unlink(missing_ok=True)

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            files = list(self.directory.glob("*.json"))
            return {
                "backend": "json",
                "directory": str(self.directory),
                "keys": len(files),
                "bytes": sum(f.stat().st_size for f in files),
                "total_writes": self.total_writes,
            }


def create_storage(kind: Optional[str] = None, **kwargs) -> KeyValueStorage:
    """
    Factory function to create durable storage.

    Args:
        kind: Type of storage ("memory", "sqlite", "json"); defaults to
            ``MONITORING["storage"]["kind"]``
        **kwargs: Storage-specific configuration

    Returns:
        KeyValueStorage instance
    """
    kind = kind or MONITORING["storage"]["kind"]
    if kind == "memory":
        return InMemoryStorage(**kwargs)
    elif kind == "sqlite":
        return SQLiteStorage(**kwargs)
    elif kind == "json":
        return JSONFileStorage(**kwargs)
    else:
        raise ValueError(f"Unknown storage kind: {kind}")


def dump_json(payload: Any) -> str:
    """Compact JSON encoding used for every persisted value."""
    return json.dumps(payload, separators=(",", ":"), default=str)
