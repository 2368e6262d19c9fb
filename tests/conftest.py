"""
Test Configuration - Shared fixtures for fileseek tests.

Uses pytest fixtures to create isolated test environments and a
deterministic stand-in for the embedding model.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Generator, Sequence

import numpy as np
import pytest

from fileseek.config import SearchConfig, set_config
from fileseek.embedder import ModelHandle
from fileseek.resources import GuardedResource
from fileseek.store import IndexStore, open_store


DIMENSION = 8


class FakeEmbedder:
    """Character-frequency embedder: deterministic, order preserving, no downloads."""

    def __init__(self, dimension: int = DIMENSION):
        self._dimension = dimension
        self.calls: list[list[str]] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector(self, text: str) -> np.ndarray:
        v = np.ones(self._dimension, dtype=np.float32)
        for ch in text:
            v[ord(ch) % self._dimension] += 1.0
        return v / np.linalg.norm(v)

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        self.calls.append(list(texts))
        if not texts:
            return np.zeros((0, self._dimension), dtype=np.float32)
        return np.stack([self.vector(t) for t in texts])


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="fileseek_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> SearchConfig:
    """Create an isolated test configuration (database outside the crawl root)."""
    root = temp_dir / "root"
    root.mkdir()
    config = SearchConfig(
        root=root,
        db_path=temp_dir / "db" / "test.db",
        dimension=DIMENSION,
        search_limit=5,
        crawler_concurrency=4,
        hasher_concurrency=2,
        embedder_batch_size=4,
        db_batch_size=2,
        model_max_attempts=3,
        model_backoff_base=0.0,
    )
    set_config(config)
    return config


@pytest.fixture
def sample_tree(test_config: SearchConfig) -> dict[str, Path]:
    """The a.txt / b/c.txt tree."""
    root = test_config.root

    a = root / "a.txt"
    a.write_text("hello")

    (root / "b").mkdir()
    c = root / "b" / "c.txt"
    c.write_text("world")

    return {"a": a, "c": c}


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def ready_model(test_config: SearchConfig, fake_embedder: FakeEmbedder) -> ModelHandle:
    """A ModelHandle that finished loading the fake embedder."""
    handle = ModelHandle(lambda: fake_embedder, test_config)
    handle.load()
    return handle


@pytest.fixture
def store(test_config: SearchConfig) -> Generator[IndexStore, None, None]:
    """An initialized, empty index store."""
    s = open_store(test_config)
    yield s
    s.close()


@pytest.fixture
def store_resource(store: IndexStore) -> GuardedResource[IndexStore]:
    return GuardedResource(store, name="store")


@pytest.fixture
def model_resource(ready_model: ModelHandle) -> GuardedResource[ModelHandle]:
    return GuardedResource(ready_model, name="model")
