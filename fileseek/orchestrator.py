"""
Orchestrator - The incremental indexing pipeline.

    Crawl → Hash (xxHash) → Detect changes → Embed → Upsert

Each stage filters out work the next one does not need: only files whose
digest differs from the stored hash are embedded, and each batch of
embeddings is committed in one transaction. The pipeline normally runs
once at startup on a background thread while queries are served.
"""

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import List, Optional

from .config import get_config, SearchConfig
from .crawler import Crawler
from .detector import ChangeDetector
from .embedder import ModelHandle
from .errors import EmbeddingError, ModelUnavailableError
from .hasher import Hasher
from .models import ChangeSet, HashedFile, IndexedItem, IndexingState, IndexingStats
from .resources import GuardedResource
from .store import IndexStore


logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs the indexing pipeline against the shared store and model.

    Locks are taken in blocking mode and never nested: the store for the
    bulk hash lookup and for each upsert, the model for each embedding
    batch. Queries can slip in between batches.
    """

    def __init__(
        self,
        store: GuardedResource[IndexStore],
        model: GuardedResource[ModelHandle],
        config: Optional[SearchConfig] = None,
    ):
        self.config = config or get_config()
        self._store = store
        self._model = model

        self._crawler = Crawler(self.config)
        self._hasher = Hasher(self.config)
        self._detector = ChangeDetector()

        self._state = IndexingState.IDLE
        self._thread: Optional[threading.Thread] = None
        self._done = threading.Event()
        self._done.set()
        self.last_stats: Optional[IndexingStats] = None
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> IndexingState:
        return self._state

    async def run_full_scan(self, root: Optional[Path] = None) -> IndexingStats:
        """
        Crawl `root` and bring the store up to date with it.

        Args:
            root: Directory to index (default: config.root)

        Returns:
            Statistics about the indexing operation

        Raises:
            ResourceNotFoundError: root does not exist
            ModelUnavailableError: files changed but the model never loaded
            StoreWriteError: a batch could not be committed
        """
        self._state = IndexingState.INDEXING
        try:
            stats = await self._run(root)
        except Exception:
            self._state = IndexingState.FAILED
            raise
        self._state = IndexingState.IDLE
        self.last_stats = stats
        return stats

    async def _run(self, root: Optional[Path]) -> IndexingStats:
        root = root or self.config.root
        start_time = time.monotonic()
        stats = IndexingStats()
        loop = asyncio.get_running_loop()

        logger.info(f"Starting indexing of {root}...")

        # Phase 1: CRAWL
        phase_start = time.monotonic()
        scan_result = await self._crawler.crawl(root)
        stats.files_scanned = len(scan_result.files)
        stats.errors += scan_result.error_count
        logger.info(
            f"Phase 1/4 complete: {stats.files_scanned} files "
            f"in {time.monotonic() - phase_start:.1f}s"
        )

        # Phase 2: HASH
        phase_start = time.monotonic()
        hashed = await self._hasher.hash_files(scan_result.files)
        stats.path_fallbacks = sum(1 for h in hashed if h.digest.is_fallback)
        logger.info(
            f"Phase 2/4 complete: {len(hashed)} digests "
            f"in {time.monotonic() - phase_start:.1f}s"
        )

        # Phase 3: DETECT CHANGES
        changes = await loop.run_in_executor(None, self._detect, hashed)
        stats.files_changed = len(changes)
        stats.files_unchanged = len({h.path for h in hashed}) - len(changes)

        # Phase 4: EMBED + UPSERT
        if changes:
            phase_start = time.monotonic()
            await self._index_changes(changes, stats)
            logger.info(
                f"Phase 4/4 complete: {stats.files_indexed} items "
                f"in {time.monotonic() - phase_start:.1f}s"
            )
        else:
            logger.info("Phase 4/4: Skipped (no new or modified files)")

        stats.duration_seconds = time.monotonic() - start_time
        logger.info(f"Indexing complete: {stats}")
        return stats

    async def _index_changes(self, changes: ChangeSet, stats: IndexingStats) -> None:
        loop = asyncio.get_running_loop()

        # No-op if the service already started loading
        self._model.unwrap().start()
        ready = await loop.run_in_executor(None, self._model.unwrap().wait_until_ready)
        if not ready:
            raise ModelUnavailableError(
                f"Cannot embed {len(changes)} changed files: model is "
                f"{self._model.unwrap().state.value}"
            )

        batches = list(changes.batches(max(1, self.config.db_batch_size)))
        for number, batch in enumerate(batches, start=1):
            try:
                items = await loop.run_in_executor(None, self._embed_batch, batch)
            except EmbeddingError as e:
                # Nothing is written; these files stay changed for the next run
                logger.error(f"Batch {number}/{len(batches)} skipped: {e}")
                stats.errors += len(batch)
                continue

            written = await loop.run_in_executor(None, self._upsert_batch, items)
            stats.files_indexed += written
            stats.batches_committed += 1
            logger.debug(f"Committed batch {number}/{len(batches)} ({written} items)")

    def _detect(self, hashed: List[HashedFile]) -> ChangeSet:
        with self._store.hold() as store:
            return self._detector.detect(store, hashed)

    def _embed_batch(self, batch: List[HashedFile]) -> List[IndexedItem]:
        with self._model.hold() as model:
            vectors = model.embed([h.text for h in batch])

        return [
            IndexedItem(
                embedding=vector,
                label=h.record.label,
                path=h.path,
                hash=h.digest.value,
            )
            for h, vector in zip(batch, vectors)
        ]

    def _upsert_batch(self, items: List[IndexedItem]) -> int:
        with self._store.hold() as store:
            return store.upsert_batch(items)

    def start_background(self, root: Optional[Path] = None) -> threading.Thread:
        """
        Run the pipeline on its own thread and event loop.

        Failures are logged and kept in last_error; they never reach
        the caller's thread.
        """
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        self._done.clear()
        self._thread = threading.Thread(
            target=self._run_in_thread,
            args=(root,),
            name="indexer",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def _run_in_thread(self, root: Optional[Path]) -> None:
        self.last_error = None
        try:
            asyncio.run(self.run_full_scan(root))
        except Exception as e:
            logger.exception(f"Background indexing failed: {e}")
            self.last_error = e
        finally:
            self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the background run finishes; False on timeout."""
        return self._done.wait(timeout)

    def close(self):
        """Clean up resources."""
        self._hasher.close()
