"""
Persistence adapters — durable key-value storage for the ledger state.

Contract used by the ledger:
  load(key)  -> parsed JSON or None
  save(key, document) -> None
  load_raw(key) -> stored text or None (legacy recovery reads raw text)

Adapter failures surface as PersistenceError; the store catches and logs
them so a broken disk never takes the ledger down.
"""

from __future__ import annotations
import json
import os
import sqlite3
import threading
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from signal_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger("ledger_persistence")


class PersistenceAdapter:
    """Base adapter: subclasses implement the raw text methods."""

    def load_raw(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def save_raw(self, key: str, text: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def load(self, key: str) -> Optional[Any]:
        raw = self.load_raw(key)
        if raw is None or raw == "":
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Stored value under {key!r} is not valid JSON: {e}") from e

    def save(self, key: str, document: Any) -> None:
        try:
            text = json.dumps(document, default=str)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot serialize state for {key!r}: {e}") from e
        self.save_raw(key, text)


class MemoryAdapter(PersistenceAdapter):
    """In-process adapter. Values are stored as JSON text so callers never share references."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        self.save_count = 0
        for key, value in (initial or {}).items():
            self._data[key] = value if isinstance(value, str) else json.dumps(value)

    def load_raw(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def save_raw(self, key: str, text: str) -> None:
        self._data[key] = text
        self.save_count += 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class SqliteAdapter(PersistenceAdapter):
    """
    SQLite key-value adapter.
    One row per key; thread-local connections, WAL journal.
    """

    def __init__(self, db_path: str = "data/ledger.db"):
        self._db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._local = threading.local()
        self._init_db()
        logger.info("SqliteAdapter initialized: %s", db_path)

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            try:
                self._local.conn = sqlite3.connect(self._db_path, timeout=10)
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot open {self._db_path}: {e}") from e
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def _init_db(self):
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key         TEXT PRIMARY KEY,
                value       TEXT NOT NULL,
                updated_at  TEXT DEFAULT ''
            );
        """)
        conn.commit()

    def load_raw(self, key: str) -> Optional[str]:
        try:
            row = self._get_conn().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Read of {key!r} failed: {e}") from e
        return row["value"] if row else None

    def save_raw(self, key: str, text: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("""
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, text, datetime.now().isoformat()))
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Write of {key!r} failed: {e}") from e

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Delete of {key!r} failed: {e}") from e

    def keys(self) -> List[str]:
        rows = self._get_conn().execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [r["key"] for r in rows]

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def get_db_stats(self) -> Dict:
        """Database health metrics."""
        stats = {"keys": len(self.keys())}
        stats["db_size_bytes"] = os.path.getsize(self._db_path) if os.path.exists(self._db_path) else 0
        stats["db_size_mb"] = round(stats["db_size_bytes"] / 1048576, 2)
        return stats
