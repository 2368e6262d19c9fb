"""
Index Store Tests - Verify persistence, atomic upserts and vector queries.

Tests:
- Idempotent schema creation
- Insert / overwrite keyed by path (ids preserved)
- All-or-nothing batches
- Nearest-neighbor ordering and the not-seeded signal
- sqlite-vector extension call sequence
"""

import sqlite3
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from fileseek.errors import (
    DimensionMismatchError, StoreEmptyError, StoreInitError, StoreWriteError, VectorIndexError,
)
from fileseek.models import IndexedItem
from fileseek.store import IndexStore
from fileseek.vector_index import NumpyVectorIndex, SqliteVectorExtension, VectorOptions


def basis(i: int, dimension: int = 8) -> np.ndarray:
    v = np.zeros(dimension, dtype=np.float32)
    v[i] = 1.0
    return v


def item(path: str, hash_: str = "h", vector: np.ndarray | None = None) -> IndexedItem:
    return IndexedItem(
        embedding=basis(0) if vector is None else vector,
        label=path.rsplit("/", 1)[-1],
        path=path,
        hash=hash_,
    )


class TestSchema:
    """Tests for IndexStore.init."""

    def test_creates_items_table(self, store):
        conn = store._get_connection()
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "items" in tables

    def test_init_is_idempotent(self, store):
        """Re-running init keeps existing items."""
        store.upsert_batch([item("a.txt")])

        store.init()
        store.init()

        assert store.count() == 1

    def test_reopen_keeps_items(self, test_config, store):
        store.upsert_batch([item("a.txt", "h1")])
        store.close()

        reopened = IndexStore(test_config)
        reopened.init()
        try:
            assert reopened.existing_hashes() == {"a.txt": "h1"}
        finally:
            reopened.close()

    def test_reset_drops_items(self, store):
        store.upsert_batch([item("a.txt")])

        store.reset()

        assert store.count() == 0


class TestUpsert:
    """Tests for IndexStore.upsert_batch."""

    def test_inserts_and_assigns_ids(self, store):
        items = [item("a.txt", "h1"), item("b/c.txt", "h2")]

        written = store.upsert_batch(items)

        assert written == 2
        assert items[0].id is not None and items[1].id is not None
        assert items[0].id != items[1].id
        assert store.existing_hashes() == {"a.txt": "h1", "b/c.txt": "h2"}

    def test_overwrite_preserves_id(self, store):
        """Upserting an existing path updates it in place."""
        first = item("a.txt", "old", basis(0))
        store.upsert_batch([first])

        second = IndexedItem(embedding=basis(1), label="renamed", path="a.txt", hash="new")
        store.upsert_batch([second])

        stored = store.get_item("a.txt")
        assert store.count() == 1
        assert stored.id == first.id == second.id
        assert stored.hash == "new"
        assert stored.label == "renamed"
        np.testing.assert_array_equal(stored.embedding, basis(1))

    def test_ids_are_monotonic(self, store):
        store.upsert_batch([item("a.txt")])
        store.upsert_batch([item("b.txt")])

        assert store.get_item("b.txt").id > store.get_item("a.txt").id

    def test_empty_batch_writes_nothing(self, store):
        conn = store._get_connection()
        before = conn.total_changes

        assert store.upsert_batch([]) == 0
        assert conn.total_changes == before

    def test_failed_batch_rolls_back(self, store):
        """A mid-batch failure leaves the pre-batch state."""
        store.upsert_batch([item("a.txt", "h0")])
        before = store.existing_hashes()

        batch = [
            item("a.txt", "h1"),            # overwrite
            item("new.txt", "h2"),          # insert
            item("broken.txt", None),       # violates NOT NULL
            item("later.txt", "h3"),
        ]
        with pytest.raises(StoreWriteError):
            store.upsert_batch(batch)

        assert store.existing_hashes() == before
        assert store.get_item("new.txt") is None

    def test_store_usable_after_rollback(self, store):
        with pytest.raises(StoreWriteError):
            store.upsert_batch([item("a.txt", "h1"), item("b.txt", None)])

        store.upsert_batch([item("a.txt", "h1")])

        assert store.existing_hashes() == {"a.txt": "h1"}

    def test_wrong_dimension_rejected(self, store):
        with pytest.raises(DimensionMismatchError):
            store.upsert_batch([item("a.txt"), item("b.txt", vector=np.ones(3, dtype=np.float32))])

        assert store.count() == 0


class TestQuery:
    """Tests for prepare_for_query / query."""

    @pytest.fixture
    def seeded(self, store):
        store.upsert_batch([
            item("x.txt", "hx", basis(0)),
            item("y.txt", "hy", basis(1)),
            item("z.txt", "hz", basis(2)),
        ])
        store.prepare_for_query()
        return store

    def test_empty_store_not_seeded(self, store):
        store.prepare_for_query()
        with pytest.raises(StoreEmptyError):
            store.query(basis(0), 5)

    def test_nearest_first(self, seeded):
        query = basis(1) * 0.9 + basis(0) * 0.1

        hits = seeded.query(query, 3)

        assert [h.path for h in hits] == ["y.txt", "x.txt", "z.txt"]
        distances = [h.distance for h in hits]
        assert distances == sorted(distances)
        assert hits[0].label == "y.txt"

    def test_respects_k(self, seeded):
        assert len(seeded.query(basis(2), 2)) == 2

    def test_k_larger_than_store(self, seeded):
        assert len(seeded.query(basis(2), 50)) == 3

    def test_exact_match_zero_distance(self, seeded):
        hits = seeded.query(basis(2), 1)
        assert hits[0].path == "z.txt"
        assert hits[0].distance == pytest.approx(0.0)

    def test_prepare_only_when_dirty(self, seeded):
        assert seeded.prepare_for_query() is False
        seeded.upsert_batch([item("w.txt", "hw", basis(3))])
        assert seeded.prepare_for_query() is True
        assert seeded.prepare_for_query(force=True) is True

    def test_prepare_picks_up_new_items(self, seeded):
        seeded.upsert_batch([item("w.txt", "hw", basis(3))])
        seeded.prepare_for_query()

        assert seeded.query(basis(3), 1)[0].path == "w.txt"

    def test_query_dimension_checked(self, seeded):
        with pytest.raises(DimensionMismatchError):
            seeded.query(np.ones(3, dtype=np.float32), 1)


class TestNumpyVectorIndex:
    """Tests for the default vector index capability."""

    def test_scan_before_quantize(self, store):
        index = NumpyVectorIndex()
        conn = store._get_connection()
        index.init(conn, "items", "embedding", VectorOptions(dimension=8))

        with pytest.raises(VectorIndexError):
            index.scan(conn, "items", "embedding", basis(0), 1)

    def test_quantize_before_init(self, store):
        with pytest.raises(VectorIndexError):
            NumpyVectorIndex().quantize(store._get_connection(), "items", "embedding")

    def test_config_string(self):
        assert VectorOptions(dimension=384).to_config_string() == "type=FLOAT32,dimension=384"


class RecordingConnection:
    """Stands in for a sqlite3 connection with sqlite-vector available."""

    def __init__(self, scan_rows=(), fail_load: bool = False):
        self.calls: list[tuple[str, tuple]] = []
        self.load_toggles: list[bool] = []
        self.scan_rows = list(scan_rows)
        self.fail_load = fail_load
        self.row_factory = None

    def enable_load_extension(self, enabled: bool) -> None:
        self.load_toggles.append(enabled)

    def executescript(self, sql: str) -> None:
        self.calls.append((sql, ()))

    def execute(self, sql: str, params=()):
        self.calls.append((sql, tuple(params)))
        if "load_extension" in sql and self.fail_load:
            raise sqlite3.OperationalError("cannot open shared object file")

        cursor = MagicMock()
        if "count(id)" in sql:
            cursor.fetchone.return_value = (2,)
        elif "vector_quantize_scan" in sql:
            cursor.fetchall.return_value = self.scan_rows
        elif "WHERE id IN" in sql:
            cursor.fetchall.return_value = [
                {"id": 3, "label": "c.txt", "path": "b/c.txt"},
                {"id": 7, "label": "a.txt", "path": "a.txt"},
            ]
        return cursor

    def close(self) -> None:
        pass

    def index_of(self, fragment: str) -> int:
        return next(i for i, (sql, _) in enumerate(self.calls) if fragment in sql)

    def params_of(self, fragment: str) -> tuple:
        return self.calls[self.index_of(fragment)][1]


class TestSqliteVectorExtension:
    """Tests for the sqlite-vector extension path of IndexStore."""

    @pytest.fixture
    def extension_config(self, test_config, temp_dir):
        test_config.vector_extension_path = temp_dir / "vector.so"
        return test_config

    def open_with(self, config, conn):
        store = IndexStore(config)
        with patch("fileseek.store.sqlite3.connect", return_value=conn):
            store.init()
        return store

    def test_selected_when_path_configured(self, extension_config):
        store = IndexStore(extension_config)
        assert isinstance(store._vector_index, SqliteVectorExtension)

    def test_numpy_index_by_default(self, test_config):
        store = IndexStore(test_config)
        assert isinstance(store._vector_index, NumpyVectorIndex)

    def test_init_loads_then_initializes(self, extension_config):
        conn = RecordingConnection()

        self.open_with(extension_config, conn)

        assert conn.load_toggles == [True, False]
        assert conn.params_of("load_extension") == (
            str(extension_config.vector_extension_path), "sqlite3_vector_init"
        )
        assert conn.params_of("vector_init") == ("items", "embedding", "type=FLOAT32,dimension=8")
        assert conn.index_of("load_extension") < conn.index_of("CREATE TABLE") < conn.index_of("vector_init")

    def test_query_quantizes_before_scan(self, extension_config):
        conn = RecordingConnection(scan_rows=[
            (np.int64(7), np.float32(0.25)),
            (np.int64(3), np.float32(0.5)),
        ])
        store = self.open_with(extension_config, conn)

        store.prepare_for_query()
        hits = store.query(basis(0), 2)

        assert conn.index_of("vector_quantize(") < conn.index_of("vector_quantize_scan")
        assert conn.params_of("vector_quantize(") == ("items", "embedding")
        table, column, blob, k = conn.params_of("vector_quantize_scan")
        assert (table, column, k) == ("items", "embedding", 2)
        assert blob == basis(0).tobytes()

        assert [(hit.id, hit.distance, hit.path) for hit in hits] == [
            (7, 0.25, "a.txt"),
            (3, 0.5, "b/c.txt"),
        ]
        assert all(type(hit.id) is int and type(hit.distance) is float for hit in hits)

    def test_scan_rows_map_to_int_float(self):
        conn = RecordingConnection(scan_rows=[("12", "1.5")])

        matches = SqliteVectorExtension("vector.so").scan(conn, "items", "embedding", basis(1), 5)

        assert matches == [(12, 1.5)]

    def test_load_failure_is_init_error(self, extension_config):
        conn = RecordingConnection(fail_load=True)

        with pytest.raises(StoreInitError):
            self.open_with(extension_config, conn)

        assert conn.load_toggles == [True, False]

    def test_scan_failure_is_vector_index_error(self):
        conn = MagicMock()
        conn.execute.side_effect = sqlite3.OperationalError("no such function: vector_quantize_scan")

        with pytest.raises(VectorIndexError):
            SqliteVectorExtension("vector.so").scan(conn, "items", "embedding", basis(0), 1)
