"""
fileseek - Local semantic search over a file tree.

Modules:
    - config: Centralized configuration
    - crawler: Parallel file system traversal
    - hasher: xxHash content digests (path fallback for unreadable files)
    - detector: Content-addressed change detection
    - embedder: sentence-transformers embedding + model lifecycle
    - vector_index: Nearest-neighbor capability (numpy or sqlite-vector)
    - store: SQLite items table, transactional upserts, vector queries
    - resources: Lock-guarded shared handles
    - orchestrator: Indexing pipeline (runs in the background)
    - coordinator: Non-blocking search
    - service: Wiring and CLI

Indexing Flow:
    Crawl → Hash → Detect changes → Embed → Upsert (one transaction per batch)

Usage:
    from fileseek import SearchService, SearchConfig

    service = SearchService(SearchConfig(root=Path("~/notes")))
    service.start()
    response = service.search("meeting notes about the budget")
"""

from .config import SearchConfig
from .coordinator import QueryCoordinator
from .models import SearchResponse, SearchStatus
from .orchestrator import Orchestrator
from .service import SearchService

__all__ = [
    "Orchestrator",
    "QueryCoordinator",
    "SearchConfig",
    "SearchResponse",
    "SearchService",
    "SearchStatus",
]
