from __future__ import annotations

import asyncio
import os
import sqlite3
import threading
from enum import Enum
from typing import Any, Callable, List, Optional

from ..domain.models import ImageBlob, ProductKey
from ..domain.normalize import now_iso
from ..errors import KeyCollisionError, StorageFullError, StorageIOError
from ..logging import get_logger

LOG = get_logger("store-blobs")

DEFAULT_FILENAME = "images.sqlite3"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS images (
  id         TEXT PRIMARY KEY,         -- "<code>_<supplier>"
  code       TEXT NOT NULL,
  supplier   TEXT NOT NULL DEFAULT '',
  format     TEXT NOT NULL DEFAULT 'jpeg',
  payload    BLOB NOT NULL,
  timestamp  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_images_code      ON images(code);
CREATE INDEX IF NOT EXISTS idx_images_supplier  ON images(supplier);
CREATE INDEX IF NOT EXISTS idx_images_timestamp ON images(timestamp);
"""


class ConnectionState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    BROKEN = "broken"


def _is_full(exc: sqlite3.Error) -> bool:
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None and code == getattr(sqlite3, "SQLITE_FULL", 13):
        return True
    return "full" in str(exc).lower()


def _row_to_blob(row: sqlite3.Row) -> ImageBlob:
    return ImageBlob(
        key=ProductKey(row["code"], row["supplier"]),
        payload=bytes(row["payload"]),
        format=row["format"],
        timestamp=row["timestamp"],
    )


class BlobStore:
    """SQLite-backed image store keyed by composite product identity.

    - Lives at `<data_dir>/images.sqlite3`.
    - Every call probes the connection first and reopens it when it is
      closed or broken, so callers only ever see quota or I/O errors.
    - Blocking SQLite work runs in a worker thread; one lock serialises
      access to the shared connection.
    """

    def __init__(self, data_dir: str, *, max_bytes: Optional[int] = None, filename: str = DEFAULT_FILENAME) -> None:
        self.db_path = os.path.join(os.path.abspath(data_dir), filename)
        self.max_bytes = max_bytes
        self.state = ConnectionState.CLOSED
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    # --------------- connection lifecycle ---------------
    def _open_locked(self) -> sqlite3.Connection:
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass
            self._conn = None
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.Error:
                # Non-fatal; continue with schema creation
                pass
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        except sqlite3.Error as exc:
            self.state = ConnectionState.BROKEN
            raise StorageIOError(f"cannot open image store at {self.db_path}: {exc}") from exc
        self._conn = conn
        self.state = ConnectionState.OPEN
        LOG.info(f"Image store ready at {self.db_path}")
        return conn

    @staticmethod
    def _probe(conn: sqlite3.Connection) -> bool:
        try:
            conn.execute("SELECT COUNT(*) FROM images;").fetchone()
            return True
        except sqlite3.Error as exc:
            LOG.warning(f"Image store probe failed ({exc}); reconnecting")
            return False

    def _ensure_open_locked(self) -> sqlite3.Connection:
        """Connection to run on, reopened when missing or failing its probe."""
        conn = self._conn
        if self.state == ConnectionState.OPEN and conn is not None and self._probe(conn):
            return conn
        if self.state == ConnectionState.OPEN:
            self.state = ConnectionState.BROKEN
        return self._open_locked()

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            conn = self._ensure_open_locked()
            try:
                return fn(conn, *args)
            except sqlite3.Error as exc:
                try:
                    conn.rollback()
                except sqlite3.Error:
                    self.state = ConnectionState.BROKEN
                if _is_full(exc):
                    raise StorageFullError(f"image store is full: {exc}") from exc
                raise StorageIOError(f"image store operation failed: {exc}") from exc

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._call, fn, *args)

    async def open(self) -> None:
        await asyncio.to_thread(self._call, lambda _conn: None)

    async def ensure_open(self) -> None:
        await self.open()

    async def close(self) -> None:
        def _close() -> None:
            with self._lock:
                if self._conn is not None:
                    self._conn.close()
                    self._conn = None
                self.state = ConnectionState.CLOSED

        await asyncio.to_thread(_close)
        LOG.debug("Image store closed")

    # --------------- operations ---------------
    async def put(self, key: ProductKey, payload: bytes, *, fmt: str = "jpeg") -> None:
        def _put(conn: sqlite3.Connection) -> None:
            cur = conn.cursor()
            cur.execute("SELECT code, supplier FROM images WHERE id = ?;", (key.storage_id,))
            existing = cur.fetchone()
            if existing is not None and (existing["code"], existing["supplier"]) != (key.code, key.supplier):
                raise KeyCollisionError(
                    f"image id {key.storage_id!r} already belongs to "
                    f"code={existing['code']!r} supplier={existing['supplier']!r}"
                )
            if self.max_bytes is not None:
                cur.execute(
                    "SELECT COALESCE(SUM(LENGTH(payload)), 0) FROM images WHERE id != ?;",
                    (key.storage_id,),
                )
                used = int(cur.fetchone()[0])
                if used + len(payload) > self.max_bytes:
                    raise StorageFullError(
                        f"image store quota exceeded ({used + len(payload)} > {self.max_bytes} bytes)"
                    )
            cur.execute(
                """
                INSERT INTO images (id, code, supplier, format, payload, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    format=excluded.format,
                    payload=excluded.payload,
                    timestamp=excluded.timestamp;
                """,
                (key.storage_id, key.code, key.supplier, fmt, sqlite3.Binary(payload), now_iso()),
            )
            conn.commit()

        await self._run(_put)
        LOG.debug(f"Stored image {key.storage_id} ({len(payload)} bytes)")

    async def get(self, key: ProductKey) -> Optional[ImageBlob]:
        def _get(conn: sqlite3.Connection) -> Optional[ImageBlob]:
            row = conn.execute(
                "SELECT code, supplier, format, payload, timestamp FROM images WHERE id = ?;",
                (key.storage_id,),
            ).fetchone()
            if row is None or (row["code"], row["supplier"]) != (key.code, key.supplier):
                return None
            return _row_to_blob(row)

        return await self._run(_get)

    async def delete(self, key: ProductKey) -> None:
        def _delete(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM images WHERE id = ?;", (key.storage_id,))
            conn.commit()

        await self._run(_delete)

    async def delete_all(self) -> None:
        def _clear(conn: sqlite3.Connection) -> int:
            cur = conn.execute("DELETE FROM images;")
            conn.commit()
            return cur.rowcount

        removed = await self._run(_clear)
        LOG.info(f"Cleared {removed} image(s)")

    async def list_all(self) -> List[ImageBlob]:
        def _all(conn: sqlite3.Connection) -> List[ImageBlob]:
            rows = conn.execute(
                "SELECT code, supplier, format, payload, timestamp FROM images ORDER BY id;"
            ).fetchall()
            return [_row_to_blob(r) for r in rows]

        return await self._run(_all)

    async def keys_for_code(self, code: str) -> List[ProductKey]:
        def _keys(conn: sqlite3.Connection) -> List[ProductKey]:
            rows = conn.execute(
                "SELECT code, supplier FROM images WHERE code = ? ORDER BY supplier;", (code,)
            ).fetchall()
            return [ProductKey(r["code"], r["supplier"]) for r in rows]

        return await self._run(_keys)

    async def count(self) -> int:
        return await self._run(lambda conn: int(conn.execute("SELECT COUNT(*) FROM images;").fetchone()[0]))
