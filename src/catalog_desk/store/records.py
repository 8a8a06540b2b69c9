from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional

from ..domain.normalize import now_iso
from ..errors import CorruptStateError, StorageFullError, StorageIOError
from ..logging import get_logger

LOG = get_logger("store-records")

DEFAULT_FILENAME = "records.sqlite3"

PRODUCTS = "products"
ORDERS = "orders"

# Well-known entry names in the key-value table.
COLLECTION_ENTRIES: Dict[str, str] = {
    PRODUCTS: "productData",
    ORDERS: "orderData",
}
SETTING_GRID_COLUMNS = "gridColumns"
SETTING_HIDE_PRICE_CUSTOMERS = "hidePriceCustomers"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
  name        TEXT PRIMARY KEY,
  value       TEXT NOT NULL,
  updated_at  TEXT DEFAULT (datetime('now'))
);
"""


def _entry_name(collection: str) -> str:
    try:
        return COLLECTION_ENTRIES[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


class RecordStore:
    """Whole-document JSON store for the products and orders collections.

    - Each collection is one serialized JSON object under a well-known name.
    - `load` never raises on bad data: unparsable documents read as empty.
    - `save` replaces the whole document in a single transaction.
    """

    def __init__(self, data_dir: str, *, max_bytes: Optional[int] = None, filename: str = DEFAULT_FILENAME) -> None:
        folder = os.path.abspath(data_dir)
        os.makedirs(folder, exist_ok=True)
        self.db_path = os.path.join(folder, filename)
        self.max_bytes = max_bytes
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageIOError(f"cannot open record store at {self.db_path}: {exc}") from exc
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.Error:
                pass
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        LOG.debug(f"Record store ready at {self.db_path}")

    # --------------- raw key-value access ---------------
    def _read(self, name: str) -> Optional[str]:
        with self.connect() as conn:
            try:
                row = conn.execute("SELECT value FROM kv WHERE name = ?;", (name,)).fetchone()
            except sqlite3.Error as exc:
                raise StorageIOError(f"record store read failed: {exc}") from exc
        return row[0] if row else None

    def _write(self, entries: Mapping[str, str]) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                if self.max_bytes is not None:
                    placeholders = ", ".join("?" for _ in entries)
                    cur.execute(
                        f"SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM kv WHERE name NOT IN ({placeholders});",
                        tuple(entries),
                    )
                    used = int(cur.fetchone()[0])
                    incoming = sum(len(v.encode("utf-8")) for v in entries.values())
                    if used + incoming > self.max_bytes:
                        raise StorageFullError(
                            f"record store quota exceeded ({used + incoming} > {self.max_bytes} bytes)"
                        )
                for name, value in entries.items():
                    cur.execute(
                        """
                        INSERT INTO kv (name, value, updated_at) VALUES (?, ?, datetime('now'))
                        ON CONFLICT(name) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at;
                        """,
                        (name, value),
                    )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                if "full" in str(exc).lower():
                    raise StorageFullError(f"record store is full: {exc}") from exc
                raise StorageIOError(f"record store write failed: {exc}") from exc

    def _parse(self, name: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as exc:
            err = CorruptStateError(f"entry {name!r} is not valid JSON: {exc}")
            LOG.warning(f"{err}; treating it as empty")
            raise err from exc

    # --------------- collections ---------------
    def load(self, collection: str) -> Dict[str, Dict[str, Any]]:
        name = _entry_name(collection)
        raw = self._read(name)
        if raw is None:
            return {}
        try:
            data = self._parse(name, raw)
        except CorruptStateError:
            return {}
        if not isinstance(data, dict):
            LOG.warning(f"{CorruptStateError(f'entry {name!r} is not a JSON object')}; treating it as empty")
            return {}
        return data

    def save(self, collection: str, mapping: Mapping[str, Dict[str, Any]]) -> None:
        name = _entry_name(collection)
        payload = json.dumps(dict(mapping), ensure_ascii=False)
        self._write({name: payload})
        LOG.debug(f"Saved {len(mapping)} document(s) to {collection}")

    def save_all(self, collections: Mapping[str, Mapping[str, Dict[str, Any]]]) -> None:
        """Replace several collections in one transaction."""
        entries = {_entry_name(c): json.dumps(dict(m), ensure_ascii=False) for c, m in collections.items()}
        self._write(entries)

    def clear(self, collection: str) -> None:
        self.save(collection, {})

    # --------------- auxiliary settings ---------------
    def get_setting(self, name: str, default: Any = None) -> Any:
        raw = self._read(name)
        if raw is None:
            return default
        try:
            return self._parse(name, raw)
        except CorruptStateError:
            return default

    def set_setting(self, name: str, value: Any) -> None:
        self._write({name: json.dumps(value, ensure_ascii=False)})

    # --------------- sync snapshots ---------------
    def snapshot(self) -> Dict[str, Any]:
        return {
            PRODUCTS: self.load(PRODUCTS),
            ORDERS: self.load(ORDERS),
            "timestamp": now_iso(),
        }

    def restore(self, snapshot: Mapping[str, Any]) -> None:
        """Overwrite collections present in `snapshot`; no merge."""
        incoming: Dict[str, Mapping[str, Dict[str, Any]]] = {}
        for collection in (PRODUCTS, ORDERS):
            value = snapshot.get(collection)
            if value is None:
                continue
            if not isinstance(value, dict):
                raise CorruptStateError(f"snapshot field {collection!r} must be an object")
            incoming[collection] = value
        if incoming:
            self.save_all(incoming)
            LOG.info(f"Restored {', '.join(sorted(incoming))} from snapshot")
