"""
SQLite-backed durable store for the reference node.

One append-only table of content-addressed blobs. Rows are inserted with
INSERT OR IGNORE and never updated or deleted. Reads re-hash the stored bytes
and treat a mismatch as a storage fault.
Uses thread-local connections; the database must be a file path.
"""

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config import DB_PATH
from ..errors import NotFound, StorageUnavailable
from ..hashing import content_locator, verify_content
from ..store import DEFAULT_CONTENT_TYPE, DurableStore
from ..util import now_epoch


class SqliteDurableStore(DurableStore):
    """
    Append-only blob table.

    Usage:
        store = SqliteDurableStore("data/willvault.db")
        locator = await store.put(payload, "application/pdf")
    """

    def __init__(self, path: Union[str, Path] = DB_PATH):
        self.path = Path(path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Connections are reused within the same thread."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self):
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                locator TEXT PRIMARY KEY,
                content_type TEXT NOT NULL,
                size INTEGER NOT NULL,
                data BLOB NOT NULL,
                created_at INTEGER NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_blobs_created
            ON blobs(created_at);""")

    async def put(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        return await asyncio.to_thread(self._put_sync, bytes(data), content_type)

    async def get(self, locator: str) -> bytes:
        return await asyncio.to_thread(self._get_sync, locator)

    def _put_sync(self, data: bytes, content_type: str) -> str:
        locator = content_locator(data)
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO blobs(locator, content_type, size, data, created_at) "
                    "VALUES(?,?,?,?,?)",
                    (locator, content_type, len(data), data, now_epoch())
                )
        except sqlite3.Error as e:
            raise StorageUnavailable(f"blob write failed: {type(e).__name__}") from None
        return locator

    def _get_sync(self, locator: str) -> bytes:
        try:
            cur = self._get_connection().execute("SELECT data FROM blobs WHERE locator=?", (locator,))
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"blob read failed: {type(e).__name__}") from None
        if row is None:
            raise NotFound(locator)
        data = bytes(row["data"])
        if not verify_content(locator, data):
            raise StorageUnavailable(f"content for {locator} failed integrity check")
        return data

    def content_type(self, locator: str) -> Optional[str]:
        cur = self._get_connection().execute("SELECT content_type FROM blobs WHERE locator=?", (locator,))
        row = cur.fetchone()
        return row["content_type"] if row else None

    def get_stats(self) -> Dict[str, Any]:
        """Blob count and total bytes, for /health."""
        cur = self._get_connection().execute("SELECT COUNT(*) AS cnt, COALESCE(SUM(size), 0) AS total FROM blobs")
        row = cur.fetchone()
        return {"blob_count": row["cnt"], "total_bytes": row["total"]}

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
