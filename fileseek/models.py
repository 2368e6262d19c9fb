"""
Data Models - Type definitions for the indexing pipeline and query path.

These dataclasses represent the data flowing through the pipeline stages,
ensuring clear interfaces between modules.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np


class DigestSource(Enum):
    """What a content digest was computed over."""
    CONTENT = "content"               # Decoded text content of the file
    PATH_FALLBACK = "path_fallback"   # File could not be read as text; path only


class SearchStatus(Enum):
    """Outcome of a single search call."""
    SUCCESS = "success"
    DATABASE_BUSY = "database_busy"
    MODEL_NOT_READY = "model_not_ready"
    STILL_SEEDING = "still_seeding"
    NO_RESULTS = "no_results"
    SEARCH_ERROR = "search_error"


class IndexingState(Enum):
    """Lifecycle of the background indexing path."""
    IDLE = "idle"
    INDEXING = "indexing"
    FAILED = "failed"


@dataclass(frozen=True)
class FileRecord:
    """
    A file found by the crawler.

    `path` is the logical identifier (POSIX path relative to the crawl
    root). `location` is where the file lives on disk and does not take
    part in equality, so records behave as a set keyed by path.
    """
    label: str
    path: str
    location: Path = field(compare=False, repr=False)

    @classmethod
    def from_location(cls, root: Path, location: Path) -> "FileRecord":
        """Create a FileRecord for a file under `root`."""
        return cls(
            label=location.name,
            path=location.relative_to(root).as_posix(),
            location=location,
        )


@dataclass(frozen=True)
class ContentDigest:
    """Hex digest plus the provenance of the hashed content."""
    value: str
    source: DigestSource

    @property
    def is_fallback(self) -> bool:
        return self.source is DigestSource.PATH_FALLBACK


@dataclass
class HashedFile:
    """
    Stage 2 Output: File with content identity.

    `text` is the canonical string that was hashed; it is also what
    gets embedded.
    """
    record: FileRecord
    digest: ContentDigest
    text: str

    @property
    def path(self) -> str:
        return self.record.path


@dataclass
class ChangeSet:
    """Files that are new or whose digest differs from the stored hash."""
    files: List[HashedFile] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self) -> Iterator[HashedFile]:
        return iter(self.files)

    def __bool__(self) -> bool:
        return bool(self.files)

    @property
    def paths(self) -> set[str]:
        return {f.path for f in self.files}

    def batches(self, size: int) -> Iterator[List[HashedFile]]:
        """Split into upsert-sized batches."""
        for i in range(0, len(self.files), size):
            yield self.files[i:i + size]


@dataclass
class IndexedItem:
    """
    A row of the items table.

    `id` is None until the store assigns one.
    """
    embedding: np.ndarray
    label: str
    path: str
    hash: str
    id: Optional[int] = None


@dataclass
class SearchHit:
    """A single ranked search result."""
    id: int
    distance: float
    label: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "distance": round(self.distance, 6),
            "label": self.label,
            "path": self.path,
        }


@dataclass
class SearchResponse:
    """Result of QueryCoordinator.search()."""
    status: SearchStatus
    results: List[SearchHit] = field(default_factory=list)
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status is SearchStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "success": self.success,
            "message": self.message,
            "results": [hit.to_dict() for hit in self.results],
        }


@dataclass
class ScanResult:
    """Result of crawling a directory tree."""
    root: Path
    files: List[FileRecord]
    skipped_count: int = 0
    error_count: int = 0
    duration_seconds: float = 0.0

    @property
    def by_path(self) -> Dict[str, FileRecord]:
        return {f.path: f for f in self.files}


@dataclass
class IndexingStats:
    """Statistics from an indexing run."""
    files_scanned: int = 0
    files_changed: int = 0
    files_indexed: int = 0
    files_unchanged: int = 0
    path_fallbacks: int = 0      # Digests computed over the path only
    batches_committed: int = 0
    errors: int = 0
    duration_seconds: float = 0.0

    def __str__(self) -> str:
        return (
            f"Indexed {self.files_indexed} of {self.files_scanned} files "
            f"({self.files_unchanged} unchanged, "
            f"{self.path_fallbacks} hashed by path, "
            f"{self.batches_committed} batches, "
            f"{self.errors} errors) "
            f"in {self.duration_seconds:.1f}s"
        )
