"""Versioned cache stores for intercepted responses.

A store holds any number of named cache versions. Each version maps request
keys to stored responses. Every operation is atomic per call, so request
handlers running on different threads can share one store without extra
locking.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .models import CachedResponse


class StoreError(Exception):
    """Raised when a cache store operation fails."""

    pass


@dataclass(frozen=True)
class VersionInfo:
    """Summary of one stored cache version."""

    name: str
    created_at: datetime
    entries: int


class CacheStore(ABC):
    """Capability interface shared by all cache store backends."""

    @abstractmethod
    def open(self, version: str) -> None:
        """Create the version if it does not exist yet."""

    @abstractmethod
    def get(self, version: str, key: str) -> CachedResponse | None:
        """Return the stored response, or None on a miss or unknown version."""

    @abstractmethod
    def put(self, version: str, key: str, response: CachedResponse) -> None:
        """Store a response, creating the version if needed."""

    @abstractmethod
    def put_all(self, version: str, entries: Iterable[tuple[str, CachedResponse]]) -> None:
        """Create the version and store every entry in one atomic step."""

    @abstractmethod
    def delete(self, version: str, key: str) -> bool:
        """Delete one entry. Returns True if it existed."""

    @abstractmethod
    def keys(self, version: str) -> list[str]:
        """Return the keys stored under a version, in insertion order."""

    @abstractmethod
    def list_versions(self) -> list[VersionInfo]:
        """Return every stored version, oldest first."""

    @abstractmethod
    def delete_version(self, version: str) -> bool:
        """Delete a version and all its entries. Returns True if it existed."""

    def has_version(self, version: str) -> bool:
        return any(info.name == version for info in self.list_versions())

    def version_names(self) -> list[str]:
        return [info.name for info in self.list_versions()]

    def close(self) -> None:
        """Release backend resources."""


class MemoryCacheStore(CacheStore):
    """In-process store guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._versions: dict[str, dict[str, CachedResponse]] = {}
        self._created: dict[str, datetime] = {}

    def _ensure(self, version: str) -> dict[str, CachedResponse]:
        if version not in self._versions:
            self._versions[version] = {}
            self._created[version] = datetime.now(UTC)
        return self._versions[version]

    def open(self, version: str) -> None:
        with self._lock:
            self._ensure(version)

    def get(self, version: str, key: str) -> CachedResponse | None:
        with self._lock:
            return self._versions.get(version, {}).get(key)

    def put(self, version: str, key: str, response: CachedResponse) -> None:
        with self._lock:
            self._ensure(version)[key] = response

    def put_all(self, version: str, entries: Iterable[tuple[str, CachedResponse]]) -> None:
        staged = list(entries)
        with self._lock:
            self._ensure(version).update(staged)

    def delete(self, version: str, key: str) -> bool:
        with self._lock:
            return self._versions.get(version, {}).pop(key, None) is not None

    def keys(self, version: str) -> list[str]:
        with self._lock:
            return list(self._versions.get(version, {}))

    def list_versions(self) -> list[VersionInfo]:
        with self._lock:
            return [
                VersionInfo(name=name, created_at=self._created[name], entries=len(entries))
                for name, entries in self._versions.items()
            ]

    def delete_version(self, version: str) -> bool:
        with self._lock:
            self._created.pop(version, None)
            return self._versions.pop(version, None) is not None


# Global lock for thread-safe database access.
# SQLite allows concurrent reads but only one writer at a time; request
# handler threads and the CLI share a single connection.
_db_lock = threading.Lock()


def _encode_headers(headers: tuple[tuple[str, str], ...]) -> str:
    return json.dumps([list(pair) for pair in headers])


def _decode_headers(raw: str) -> tuple[tuple[str, str], ...]:
    return tuple((str(name), str(value)) for name, value in json.loads(raw))


def _row_to_response(row: sqlite3.Row) -> CachedResponse:
    return CachedResponse(
        url=row["url"],
        status=row["status"],
        reason=row["reason"],
        headers=_decode_headers(row["headers"]),
        body=bytes(row["body"]),
        stored_at=datetime.fromisoformat(row["stored_at"]),
    )


class SqliteCacheStore(CacheStore):
    """Store backed by a SQLite file, shared across process restarts."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn = init_store(db_path)

    def _now(self) -> str:
        return datetime.now(UTC).isoformat()

    def _insert_version(self, version: str) -> None:
        self._conn.execute(
            "INSERT OR IGNORE INTO cache_versions (name, created_at) VALUES (?, ?)",
            (version, self._now()),
        )

    def _insert_entry(self, version: str, key: str, response: CachedResponse) -> None:
        stored_at = response.stored_at or datetime.now(UTC)
        self._conn.execute(
            """
            INSERT INTO cache_entries (version, key, url, status, reason, headers, body, stored_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(version, key) DO UPDATE SET
                url = excluded.url,
                status = excluded.status,
                reason = excluded.reason,
                headers = excluded.headers,
                body = excluded.body,
                stored_at = excluded.stored_at
            """,
            (
                version,
                key,
                response.url,
                response.status,
                response.reason,
                _encode_headers(response.headers),
                response.body,
                stored_at.isoformat(),
            ),
        )

    def open(self, version: str) -> None:
        try:
            with _db_lock, self._conn:
                self._insert_version(version)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open cache version '{version}': {e}")

    def get(self, version: str, key: str) -> CachedResponse | None:
        try:
            with _db_lock:
                row = self._conn.execute(
                    """
                    SELECT url, status, reason, headers, body, stored_at
                    FROM cache_entries WHERE version = ? AND key = ?
                    """,
                    (version, key),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read cache entry: {e}")

        return _row_to_response(row) if row is not None else None

    def put(self, version: str, key: str, response: CachedResponse) -> None:
        try:
            with _db_lock, self._conn:
                self._insert_version(version)
                self._insert_entry(version, key, response)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to write cache entry: {e}")

    def put_all(self, version: str, entries: Iterable[tuple[str, CachedResponse]]) -> None:
        staged = list(entries)
        try:
            # One transaction: either the version and every entry land, or nothing does
            with _db_lock, self._conn:
                self._insert_version(version)
                for key, response in staged:
                    self._insert_entry(version, key, response)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to populate cache version '{version}': {e}")

    def delete(self, version: str, key: str) -> bool:
        try:
            with _db_lock, self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM cache_entries WHERE version = ? AND key = ?",
                    (version, key),
                )
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete cache entry: {e}")
        return cursor.rowcount > 0

    def keys(self, version: str) -> list[str]:
        try:
            with _db_lock:
                rows = self._conn.execute(
                    "SELECT key FROM cache_entries WHERE version = ? ORDER BY id",
                    (version,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list cache keys: {e}")
        return [row["key"] for row in rows]

    def list_versions(self) -> list[VersionInfo]:
        try:
            with _db_lock:
                rows = self._conn.execute(
                    """
                    SELECT v.name, v.created_at, COUNT(e.id) AS entries
                    FROM cache_versions v
                    LEFT JOIN cache_entries e ON e.version = v.name
                    GROUP BY v.name
                    ORDER BY v.created_at, v.name
                    """
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list cache versions: {e}")

        return [
            VersionInfo(
                name=row["name"],
                created_at=datetime.fromisoformat(row["created_at"]),
                entries=row["entries"],
            )
            for row in rows
        ]

    def delete_version(self, version: str) -> bool:
        try:
            with _db_lock, self._conn:
                self._conn.execute("DELETE FROM cache_entries WHERE version = ?", (version,))
                cursor = self._conn.execute("DELETE FROM cache_versions WHERE name = ?", (version,))
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete cache version '{version}': {e}")
        return cursor.rowcount > 0

    def close(self) -> None:
        with _db_lock:
            self._conn.close()


def init_store(db_path: str) -> sqlite3.Connection:
    """Initialize the store database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Database connection with WAL mode enabled.

    Raises:
        StoreError: If database initialization fails.
    """
    try:
        parent_dir = Path(db_path).parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_versions (
                name TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                version TEXT NOT NULL,
                key TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                reason TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                stored_at TEXT NOT NULL,
                UNIQUE(version, key)
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_cache_entries_version
            ON cache_entries(version)
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise StoreError(f"Failed to initialize cache store: {e}")
    except OSError as e:
        raise StoreError(f"Failed to create cache store directory: {e}")


def open_store(backend: str, path: str | None = None) -> CacheStore:
    """Create a store for the configured backend."""
    if backend == "memory":
        return MemoryCacheStore()
    if backend == "sqlite":
        if not path:
            raise StoreError("A database path is required for the sqlite store")
        return SqliteCacheStore(path)
    raise StoreError(f"Unknown store backend: {backend}")
