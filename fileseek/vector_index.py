"""
Vector Index - Nearest-neighbor capability over the items table.

The store calls init() once, quantize() whenever rows changed, and
scan() per query. Two implementations:

    - NumpyVectorIndex: exact L2 search over an in-memory float32 matrix
    - SqliteVectorExtension: the sqlite-vector loadable extension
      (vector_init / vector_quantize / vector_quantize_scan)
"""

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

import numpy as np

from .embedder import deserialize_embedding, serialize_embedding
from .errors import DimensionMismatchError, StoreInitError, VectorIndexError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VectorOptions:
    """Index parameters passed to init()."""
    dimension: int
    element_type: str = "FLOAT32"

    def to_config_string(self) -> str:
        return f"type={self.element_type},dimension={self.dimension}"


class VectorIndex(Protocol):
    """Capability contract: init -> quantize -> scan."""

    def init(self, conn: sqlite3.Connection, table: str, column: str, options: VectorOptions) -> None: ...

    def quantize(self, conn: sqlite3.Connection, table: str, column: str) -> None: ...

    def scan(
        self,
        conn: sqlite3.Connection,
        table: str,
        column: str,
        vector: np.ndarray,
        k: int,
    ) -> List[Tuple[int, float]]: ...


class NumpyVectorIndex:
    """
    Exact nearest-neighbor search with numpy.

    quantize() snapshots every (rowid, embedding) pair into a matrix;
    scan() only sees data as of the last quantize().
    """

    def __init__(self):
        self._options: Optional[VectorOptions] = None
        self._ids: Optional[np.ndarray] = None
        self._matrix: Optional[np.ndarray] = None

    def init(self, conn: sqlite3.Connection, table: str, column: str, options: VectorOptions) -> None:
        if options.element_type != "FLOAT32":
            raise StoreInitError(f"Unsupported vector type: {options.element_type}")
        self._options = options
        self._ids = None
        self._matrix = None

    def quantize(self, conn: sqlite3.Connection, table: str, column: str) -> None:
        if self._options is None:
            raise VectorIndexError("Vector index used before init()")

        dimension = self._options.dimension
        rows = conn.execute(f"SELECT id, {column} FROM {table} ORDER BY id").fetchall()

        ids = np.empty(len(rows), dtype=np.int64)
        matrix = np.empty((len(rows), dimension), dtype=np.float32)
        for i, (row_id, blob) in enumerate(rows):
            vector = deserialize_embedding(blob)
            if vector.shape[0] != dimension:
                raise DimensionMismatchError(dimension, vector.shape[0])
            ids[i] = row_id
            matrix[i] = vector

        self._ids = ids
        self._matrix = matrix
        logger.debug(f"Quantized {len(rows)} vectors ({dimension} dims)")

    def scan(
        self,
        conn: sqlite3.Connection,
        table: str,
        column: str,
        vector: np.ndarray,
        k: int,
    ) -> List[Tuple[int, float]]:
        if self._matrix is None or self._ids is None:
            raise VectorIndexError("Vector index scanned before quantize()")

        query = np.asarray(vector, dtype=np.float32).reshape(-1)
        if query.shape[0] != self._matrix.shape[1]:
            raise DimensionMismatchError(self._matrix.shape[1], query.shape[0])

        n = self._matrix.shape[0]
        if n == 0 or k <= 0:
            return []

        distances = np.linalg.norm(self._matrix - query, axis=1)
        k = min(k, n)
        if k < n:
            nearest = np.argpartition(distances, k - 1)[:k]
        else:
            nearest = np.arange(n)
        # Stable sort so equal distances keep id order
        nearest = nearest[np.argsort(distances[nearest], kind="stable")]

        return [(int(self._ids[i]), float(distances[i])) for i in nearest]


class SqliteVectorExtension:
    """
    Vector search through the sqlite-vector loadable extension.

    The extension must be loaded into the connection before init(); see
    load().
    """

    def __init__(self, extension_path: Path, entry_point: Optional[str] = "sqlite3_vector_init"):
        self.extension_path = Path(extension_path)
        self.entry_point = entry_point

    def load(self, conn: sqlite3.Connection) -> None:
        """Load the extension into `conn`."""
        try:
            conn.enable_load_extension(True)
            try:
                if self.entry_point:
                    conn.execute(
                        "SELECT load_extension(?, ?)",
                        (str(self.extension_path), self.entry_point),
                    )
                else:
                    conn.load_extension(str(self.extension_path))
            finally:
                conn.enable_load_extension(False)
        except (AttributeError, sqlite3.Error) as e:
            raise StoreInitError(
                f"Failed to load vector extension {self.extension_path}: {e}"
            ) from e
        logger.info(f"Loaded vector extension {self.extension_path}")

    def init(self, conn: sqlite3.Connection, table: str, column: str, options: VectorOptions) -> None:
        try:
            conn.execute(
                "SELECT vector_init(?, ?, ?)",
                (table, column, options.to_config_string()),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreInitError(f"vector_init failed: {e}") from e

    def quantize(self, conn: sqlite3.Connection, table: str, column: str) -> None:
        try:
            conn.execute("SELECT vector_quantize(?, ?)", (table, column)).fetchone()
        except sqlite3.Error as e:
            raise VectorIndexError(f"vector_quantize failed: {e}") from e

    def scan(
        self,
        conn: sqlite3.Connection,
        table: str,
        column: str,
        vector: np.ndarray,
        k: int,
    ) -> List[Tuple[int, float]]:
        try:
            rows = conn.execute(
                "SELECT rowid, distance FROM vector_quantize_scan(?, ?, ?, ?) ORDER BY distance",
                (table, column, serialize_embedding(vector), k),
            ).fetchall()
        except sqlite3.Error as e:
            raise VectorIndexError(f"vector_quantize_scan failed: {e}") from e
        return [(int(row_id), float(distance)) for row_id, distance in rows]
