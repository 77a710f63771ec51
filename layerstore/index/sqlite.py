#!/usr/bin/env python3
"""SQLite-backed item index.

Records live in a single table keyed by (layer_id, path). Batches are
inserted inside one transaction so a duplicate anywhere in the batch
leaves the table untouched.

Example:
    >>> index = SqliteItemIndex("store/index.db")
    >>> index.insert([Item("file1", ItemType.FILE, 1)])
    >>> index.query_by_path("file1")
    [Item(path='file1', type=<ItemType.FILE: 'file'>, layer_id=1)]
"""

import sqlite3
import threading
from pathlib import Path
from typing import Iterable, List, Union

from layerstore.core.constants import ItemType
from layerstore.core.errors import IndexInconsistencyError, IOFailure
from layerstore.index.base import Item, ItemIndex
from layerstore.infrastructure.logger import get_logger

logger = get_logger("layerstore.index")

MEMORY_DATABASE = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    layer_id INTEGER NOT NULL,
    path     TEXT    NOT NULL,
    type     TEXT    NOT NULL,
    PRIMARY KEY (layer_id, path)
);
CREATE INDEX IF NOT EXISTS items_by_path ON items (path, layer_id);
"""

_ORDER = " ORDER BY path, layer_id DESC"


class SqliteItemIndex(ItemIndex):
    """
    Item index persisted in an SQLite database.

    One connection is shared between threads and serialized with a lock.

    Attributes:
        database: Database file path, or ":memory:"
    """

    def __init__(self, database: Union[str, Path] = MEMORY_DATABASE):
        """
        Open (and create when missing) the index database.

        Args:
            database: Database file path, or ":memory:"

        Raises:
            IOFailure: If the database cannot be opened or initialized
        """
        self.database = str(database)
        self._lock = threading.Lock()

        try:
            if self.database != MEMORY_DATABASE:
                Path(self.database).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.database, check_same_thread=False)
            with self._conn:
                self._conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise IOFailure(f"Cannot open index: {e}", path=self.database, operation="open") from e

        logger.debug("index opened", database=self.database)

    def _query(self, sql: str, params: tuple = ()) -> List[Item]:
        try:
            with self._lock:
                rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise IOFailure(f"Index query failed: {e}", path=self.database, operation="query") from e
        return [Item(path=path, type=ItemType(kind), layer_id=layer_id) for layer_id, path, kind in rows]

    def insert(self, items: Iterable[Item]) -> None:
        rows = [(item.layer_id, item.path, item.type.value) for item in items]
        try:
            with self._lock, self._conn:
                self._conn.executemany(
                    "INSERT INTO items (layer_id, path, type) VALUES (?, ?, ?)", rows
                )
        except sqlite3.IntegrityError as e:
            raise IndexInconsistencyError(
                f"Duplicate record rejected the batch: {e}", path=self.database, operation="insert"
            ) from e
        except sqlite3.Error as e:
            raise IOFailure(f"Index insert failed: {e}", path=self.database, operation="insert") from e

    def query_by_path(self, path: str) -> List[Item]:
        return self._query(
            "SELECT layer_id, path, type FROM items WHERE path = ? ORDER BY layer_id DESC", (path,)
        )

    def query_by_layer(self, layer_id: int) -> List[Item]:
        return self._query(
            "SELECT layer_id, path, type FROM items WHERE layer_id = ? ORDER BY path", (layer_id,)
        )

    def query_by_prefix(self, prefix: str) -> List[Item]:
        if not prefix:
            return self.all_items()
        # substr() avoids LIKE wildcards in user paths
        return self._query(
            "SELECT layer_id, path, type FROM items"
            " WHERE path = ? OR substr(path, 1, ?) = ?" + _ORDER,
            (prefix, len(prefix) + 1, prefix + "/"),
        )

    def all_items(self) -> List[Item]:
        return self._query("SELECT layer_id, path, type FROM items" + _ORDER)

    def layer_ids(self) -> List[int]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT DISTINCT layer_id FROM items ORDER BY layer_id"
                ).fetchall()
        except sqlite3.Error as e:
            raise IOFailure(f"Index query failed: {e}", path=self.database, operation="query") from e
        return [row[0] for row in rows]

    def delete_layer(self, layer_id: int) -> int:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute("DELETE FROM items WHERE layer_id = ?", (layer_id,))
        except sqlite3.Error as e:
            raise IOFailure(
                f"Index delete failed: {e}", path=self.database, operation="delete_layer"
            ) from e
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug("index closed", database=self.database)

    def __repr__(self) -> str:
        return f"SqliteItemIndex(database='{self.database}')"
