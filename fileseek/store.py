"""
Index Store - SQLite persistence and nearest-neighbor queries.

Owns the only write path. Each upsert batch is one transaction, so a
reader never observes a partially written batch. Vector search is
delegated to a VectorIndex capability that must be re-prepared
(quantized) after data changes.
"""

import logging
import sqlite3
from typing import Dict, Iterable, List, Optional

import numpy as np

from .config import get_config, SearchConfig
from .embedder import deserialize_embedding, serialize_embedding
from .errors import (
    DimensionMismatchError, StoreEmptyError, StoreInitError, StoreWriteError,
)
from .models import IndexedItem, SearchHit
from .vector_index import NumpyVectorIndex, SqliteVectorExtension, VectorIndex, VectorOptions


logger = logging.getLogger(__name__)

TABLE = "items"
EMBEDDING_COLUMN = "embedding"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    {EMBEDDING_COLUMN} BLOB NOT NULL,
    label TEXT NOT NULL,
    path TEXT NOT NULL UNIQUE,
    hash TEXT NOT NULL
);
"""

# Existing paths keep their id; only the payload columns are overwritten
UPSERT_SQL = f"""
INSERT INTO {TABLE} ({EMBEDDING_COLUMN}, label, path, hash)
VALUES (?, ?, ?, ?)
ON CONFLICT(path) DO UPDATE SET
    {EMBEDDING_COLUMN} = excluded.{EMBEDDING_COLUMN},
    label = excluded.label,
    hash = excluded.hash
RETURNING id
"""


class IndexStore:
    """
    The persisted items table plus its vector index.

    Not thread-safe on its own: callers share it through a
    GuardedResource, which serializes every access.
    """

    def __init__(
        self,
        config: SearchConfig | None = None,
        vector_index: VectorIndex | None = None,
    ):
        self.config = config or get_config()
        self._conn: Optional[sqlite3.Connection] = None
        if vector_index is None:
            if self.config.vector_extension_path is not None:
                vector_index = SqliteVectorExtension(self.config.vector_extension_path)
            else:
                vector_index = NumpyVectorIndex()
        self._vector_index = vector_index
        self._dirty = True

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            # Shared between the indexing thread and query callers
            self._conn = sqlite3.connect(str(self.config.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            if isinstance(self._vector_index, SqliteVectorExtension):
                self._vector_index.load(self._conn)
        return self._conn

    def init(self) -> None:
        """
        Create the items table and set up the vector index.

        Safe to call repeatedly.

        Raises:
            StoreInitError: the store is unusable
        """
        try:
            conn = self._get_connection()
            conn.executescript(SCHEMA_SQL)
            self._vector_index.init(
                conn, TABLE, EMBEDDING_COLUMN, VectorOptions(dimension=self.dimension)
            )
        except sqlite3.Error as e:
            raise StoreInitError(f"Failed to initialize {self.config.db_path}: {e}") from e
        self._dirty = True
        logger.info(f"Index store ready at {self.config.db_path} ({self.count()} items)")

    def reset(self) -> None:
        """Drop every item and recreate an empty schema."""
        conn = self._get_connection()
        with conn:
            conn.execute(f"DROP TABLE IF EXISTS {TABLE}")
        logger.warning(f"Dropped all items from {self.config.db_path}")
        self.init()

    def count(self) -> int:
        """Number of IndexedItems currently stored."""
        conn = self._get_connection()
        return conn.execute(f"SELECT count(id) FROM {TABLE}").fetchone()[0]

    def existing_hashes(self) -> Dict[str, str]:
        """Get path -> hash for every stored item in one query."""
        conn = self._get_connection()
        cursor = conn.execute(f"SELECT path, hash FROM {TABLE}")
        return {row["path"]: row["hash"] for row in cursor.fetchall()}

    def get_item(self, path: str) -> Optional[IndexedItem]:
        """Find the item stored for `path`. Returns None if not found."""
        conn = self._get_connection()
        row = conn.execute(
            f"SELECT id, {EMBEDDING_COLUMN}, label, path, hash FROM {TABLE} WHERE path = ?",
            (path,)
        ).fetchone()
        if row is None:
            return None
        return IndexedItem(
            id=row["id"],
            embedding=deserialize_embedding(row[EMBEDDING_COLUMN]),
            label=row["label"],
            path=row["path"],
            hash=row["hash"],
        )

    def upsert_batch(self, items: Iterable[IndexedItem]) -> int:
        """
        Insert or overwrite items in a single transaction.

        Either every item is committed or none is. Assigns `id` on each
        item after commit.

        Returns:
            Number of items written (0 for an empty batch, which opens
            no transaction)

        Raises:
            DimensionMismatchError: an embedding has the wrong width
            StoreWriteError: the transaction was rolled back
        """
        items = list(items)
        if not items:
            return 0

        rows = []
        for item in items:
            embedding = np.asarray(item.embedding, dtype=np.float32).reshape(-1)
            if embedding.shape[0] != self.dimension:
                raise DimensionMismatchError(self.dimension, embedding.shape[0])
            rows.append((serialize_embedding(embedding), item.label, item.path, item.hash))

        conn = self._get_connection()
        ids: List[int] = []
        try:
            with conn:
                for row in rows:
                    ids.append(conn.execute(UPSERT_SQL, row).fetchall()[0][0])
        except sqlite3.Error as e:
            logger.error(f"Upsert of {len(rows)} items rolled back: {e}")
            raise StoreWriteError(f"Upsert batch failed: {e}") from e

        for item, item_id in zip(items, ids):
            item.id = item_id

        self._dirty = True
        logger.debug(f"Committed {len(rows)} items")
        return len(rows)

    def prepare_for_query(self, force: bool = False) -> bool:
        """
        (Re)build the vector index if items changed since the last call.

        Returns:
            True if the index was rebuilt
        """
        if not self._dirty and not force:
            return False
        self._vector_index.quantize(self._get_connection(), TABLE, EMBEDDING_COLUMN)
        self._dirty = False
        return True

    def query(self, vector: np.ndarray, k: int) -> List[SearchHit]:
        """
        Up to `k` nearest items, ordered by ascending L2 distance.

        Call prepare_for_query() first so distances reflect current data.

        Raises:
            StoreEmptyError: the store holds no items yet
            DimensionMismatchError: query vector has the wrong width
        """
        if self.count() == 0:
            raise StoreEmptyError("No items indexed yet")

        vector = np.asarray(vector, dtype=np.float32).reshape(-1)
        if vector.shape[0] != self.dimension:
            raise DimensionMismatchError(self.dimension, vector.shape[0])

        conn = self._get_connection()
        matches = self._vector_index.scan(conn, TABLE, EMBEDDING_COLUMN, vector, k)
        if not matches:
            return []

        placeholders = ",".join("?" for _ in matches)
        cursor = conn.execute(
            f"SELECT id, label, path FROM {TABLE} WHERE id IN ({placeholders})",
            [row_id for row_id, _ in matches],
        )
        rows = {row["id"]: row for row in cursor.fetchall()}

        return [
            SearchHit(
                id=row_id,
                distance=distance,
                label=rows[row_id]["label"],
                path=rows[row_id]["path"],
            )
            for row_id, distance in matches
            if row_id in rows
        ]

    def close(self):
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


def open_store(
    config: SearchConfig | None = None,
    vector_index: VectorIndex | None = None,
) -> IndexStore:
    """Create an IndexStore and initialize its schema."""
    store = IndexStore(config, vector_index)
    store.init()
    return store
