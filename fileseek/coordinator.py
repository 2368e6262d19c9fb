"""
Query Coordinator - Non-blocking search over the index store.

A search never waits: if indexing holds the store or the model, or the
model has not finished loading, the caller gets a typed status right
away and can retry later.
"""

import logging
import time

from .config import get_config, SearchConfig
from .embedder import ModelHandle
from .models import SearchResponse, SearchStatus
from .resources import GuardedResource
from .store import IndexStore


logger = logging.getLogger(__name__)


class QueryCoordinator:
    """
    Answers search queries against the shared store and model.

    Acquisition order is store, then model, both with try semantics.
    """

    def __init__(
        self,
        store: GuardedResource[IndexStore],
        model: GuardedResource[ModelHandle],
        config: SearchConfig | None = None,
    ):
        self.config = config or get_config()
        self._store = store
        self._model = model

    def search(self, query: str, limit: int | None = None) -> SearchResponse:
        """
        Embed `query` and return the nearest indexed files.

        Args:
            query: Free-text search terms
            limit: Maximum results (default: config.search_limit)

        Returns:
            SearchResponse whose status is one of SUCCESS, NO_RESULTS,
            DATABASE_BUSY, MODEL_NOT_READY, STILL_SEEDING, SEARCH_ERROR
        """
        k = self.config.search_limit if limit is None else limit

        with self._store.try_hold() as store:
            if store is None:
                return SearchResponse(SearchStatus.DATABASE_BUSY, message="Database is not ready")

            with self._model.try_hold() as model:
                if model is None or not model.is_ready:
                    return SearchResponse(SearchStatus.MODEL_NOT_READY, message="Model is not ready")

                try:
                    if store.count() == 0:
                        return SearchResponse(SearchStatus.STILL_SEEDING, message="Index is still seeding")

                    start = time.monotonic()
                    vector = model.embed([query])[0]
                    store.prepare_for_query()
                    hits = store.query(vector, k)
                    logger.info(
                        f"Search for {query!r}: {len(hits)} results "
                        f"in {(time.monotonic() - start) * 1000:.0f}ms"
                    )
                except Exception:
                    logger.exception(f"Search for {query!r} failed")
                    return SearchResponse(SearchStatus.SEARCH_ERROR, message="Search error")

        if not hits:
            return SearchResponse(SearchStatus.NO_RESULTS, message="No results")
        return SearchResponse(SearchStatus.SUCCESS, results=hits)

    def is_ready(self) -> bool:
        """True if a search issued now would get past the locks and the model check."""
        with self._store.try_hold() as store:
            if store is None:
                return False
            with self._model.try_hold() as model:
                return model is not None and model.is_ready
