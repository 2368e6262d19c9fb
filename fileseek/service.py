"""
Search Service - Wires the store, model, indexer and query path together.

Usage:
    service = SearchService(SearchConfig(root=Path("~/notes")))
    service.start()
    response = service.search("quarterly budget")
"""

import json
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

from .config import get_config, SearchConfig, set_config
from .coordinator import QueryCoordinator
from .embedder import Embedder, ModelHandle, load_sentence_transformer
from .models import SearchResponse
from .orchestrator import Orchestrator
from .resources import GuardedResource
from .store import IndexStore
from .vector_index import VectorIndex


logger = logging.getLogger(__name__)


class SearchService:
    """
    Owns the shared resources for one process.

    Construction opens and initializes the store; a StoreInitError
    raised here is fatal. start() kicks off model loading and the
    background indexing run, both without blocking.
    """

    def __init__(
        self,
        config: Optional[SearchConfig] = None,
        loader: Optional[Callable[[], Embedder]] = None,
        vector_index: Optional[VectorIndex] = None,
    ):
        self.config = config or get_config()
        if config:
            set_config(config)

        store = IndexStore(self.config, vector_index)
        store.init()

        model = ModelHandle(loader or (lambda: load_sentence_transformer(self.config)), self.config)

        self._store = GuardedResource(store, name="store")
        self._model = GuardedResource(model, name="model")
        self.orchestrator = Orchestrator(self._store, self._model, self.config)
        self.coordinator = QueryCoordinator(self._store, self._model, self.config)

    @property
    def store(self) -> GuardedResource[IndexStore]:
        return self._store

    @property
    def model(self) -> GuardedResource[ModelHandle]:
        return self._model

    def reset_index(self) -> None:
        """Drop every indexed item (forces a full re-embed)."""
        with self._store.hold() as store:
            store.reset()

    def start(self, root: Optional[Path] = None) -> None:
        """Start model loading and background indexing."""
        self._model.unwrap().start()
        self.orchestrator.start_background(root)
        logger.info(f"Serving searches while indexing {root or self.config.root}")

    def search(self, query: str, limit: Optional[int] = None) -> SearchResponse:
        return self.coordinator.search(query, limit)

    def is_ready(self) -> bool:
        return self.coordinator.is_ready()

    def wait_for_indexing(self, timeout: Optional[float] = None) -> bool:
        return self.orchestrator.wait(timeout)

    def close(self):
        """Wait for indexing to finish, then release resources."""
        self.orchestrator.wait()
        self.orchestrator.close()
        with self._store.hold() as store:
            store.close()


def _print_response(query: str, response: SearchResponse) -> None:
    print(json.dumps({"query": query, **response.to_dict()}, indent=2))


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Local semantic file search")
    parser.add_argument("root", nargs="?", help="Directory to index (default: FILESEEK_ROOT or cwd)")
    parser.add_argument("--db", help="Path to the SQLite index")
    parser.add_argument("--query", "-q", action="append", default=[], help="Query to run (repeatable)")
    parser.add_argument("--limit", type=int, help="Maximum results per query")
    parser.add_argument("--force", action="store_true", help="Drop the index and rebuild")
    parser.add_argument("--wait", action="store_true", help="Wait for indexing before querying")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    config = SearchConfig.from_env()
    if args.root:
        config.root = Path(args.root)
    if args.db:
        config.db_path = Path(args.db)
    config.__post_init__()

    service = SearchService(config)
    try:
        if args.force:
            service.reset_index()
        service.start()

        if args.query:
            if args.wait:
                service.wait_for_indexing()
                service.model.unwrap().wait_until_ready()
            for query in args.query:
                _print_response(query, service.search(query, args.limit))
            return

        print("Type a query and press Enter (Ctrl+D to quit).", file=sys.stderr)
        for line in sys.stdin:
            query = line.strip()
            if query:
                _print_response(query, service.search(query, args.limit))

    except KeyboardInterrupt:
        print("\nStopped.", file=sys.stderr)
    finally:
        service.close()


if __name__ == "__main__":
    main()
