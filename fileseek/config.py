"""
Search Configuration - Centralized settings for indexing and querying.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Set


@dataclass
class SearchConfig:
    """
    Configuration for the crawler, index store and query path.

    The database defaults to ~/.fileseek/index.db and the crawl root
    to the current working directory.
    """

    # --- Paths ---
    root: Path = field(default_factory=Path.cwd)
    db_path: Path = field(default_factory=lambda: Path.home() / ".fileseek" / "index.db")
    vector_extension_path: Optional[Path] = None  # sqlite-vector extension; numpy index if unset

    # --- Model ---
    model_name: str = "all-MiniLM-L6-v2"
    dimension: int = 384
    model_max_attempts: int = 5
    model_backoff_base: float = 0.5   # Seconds, doubled per failed attempt
    model_backoff_max: float = 30.0

    # --- Query ---
    search_limit: int = 20

    # --- Concurrency Limits ---
    crawler_concurrency: int = 16   # Directories listed in parallel
    hasher_concurrency: int = 8     # Parallel file reads
    embedder_batch_size: int = 64
    db_batch_size: int = 256        # Items per upsert transaction

    # --- Skip Patterns ---
    skip_hidden: bool = True
    skip_dirs: Set[str] = field(default_factory=lambda: {
        # Version control
        ".git", ".svn", ".hg",
        # Dependencies
        "node_modules", "__pycache__", ".venv", "venv",
        # Build outputs
        "target", ".next",
        # IDE/Editor
        ".idea", ".vscode",
        # Cache
        ".cache", ".pytest_cache", ".mypy_cache",
    })

    def __post_init__(self):
        """Ensure all paths are absolute and the database directory exists."""
        self.root = Path(self.root).expanduser().resolve()
        self.db_path = Path(self.db_path).expanduser().resolve()
        if self.vector_extension_path is not None:
            self.vector_extension_path = Path(self.vector_extension_path).expanduser().resolve()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "SearchConfig":
        """
        Create config from environment variables.

        Supported env vars:
            FILESEEK_ROOT: Directory to crawl
            FILESEEK_DB_PATH: Path to SQLite database
            FILESEEK_MODEL: sentence-transformers model name
            FILESEEK_DIMENSION: Embedding dimension of the model
            FILESEEK_SEARCH_LIMIT: Results returned per query
            FILESEEK_CRAWLER_CONCURRENCY: Parallel directory listings
            FILESEEK_HASHER_CONCURRENCY: Parallel file reads
            FILESEEK_BATCH_SIZE: Items per upsert transaction
            FILESEEK_MODEL_MAX_ATTEMPTS: Model load attempts before giving up
            FILESEEK_VECTOR_EXTENSION: Path to the sqlite-vector extension
        """
        config = cls()

        if root := os.environ.get("FILESEEK_ROOT"):
            config.root = Path(root)

        if db_path := os.environ.get("FILESEEK_DB_PATH"):
            config.db_path = Path(db_path)

        if model := os.environ.get("FILESEEK_MODEL"):
            config.model_name = model

        if dimension := os.environ.get("FILESEEK_DIMENSION"):
            config.dimension = int(dimension)

        if limit := os.environ.get("FILESEEK_SEARCH_LIMIT"):
            config.search_limit = int(limit)

        if crawler := os.environ.get("FILESEEK_CRAWLER_CONCURRENCY"):
            config.crawler_concurrency = int(crawler)

        if hasher := os.environ.get("FILESEEK_HASHER_CONCURRENCY"):
            config.hasher_concurrency = int(hasher)

        if batch := os.environ.get("FILESEEK_BATCH_SIZE"):
            config.db_batch_size = int(batch)

        if attempts := os.environ.get("FILESEEK_MODEL_MAX_ATTEMPTS"):
            config.model_max_attempts = int(attempts)

        if extension := os.environ.get("FILESEEK_VECTOR_EXTENSION"):
            config.vector_extension_path = Path(extension)

        config.__post_init__()
        return config


# Singleton default config
_default_config: SearchConfig | None = None


def get_config() -> SearchConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = SearchConfig.from_env()
    return _default_config


def set_config(config: SearchConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
