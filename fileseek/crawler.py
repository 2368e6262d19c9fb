"""
Crawler - Parallel file system traversal.

Directory listings run in the default executor, bounded by a semaphore,
and every subdirectory branch is joined before crawl() returns.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import List, Tuple

from .config import get_config, SearchConfig
from .errors import ErrorAction, ResourceNotFoundError, handle_error
from .models import FileRecord, ScanResult


logger = logging.getLogger(__name__)


class Crawler:
    """
    Recursive directory crawler.

    Produces FileRecord objects for every regular file under the root,
    filtering out directories and files that match skip patterns.
    Ordering of the result is unspecified.
    """

    def __init__(self, config: SearchConfig | None = None):
        self.config = config or get_config()
        self._semaphore: asyncio.Semaphore | None = None
        self._skipped = 0
        self._errors = 0

    async def crawl(self, root: Path | None = None) -> ScanResult:
        """
        Crawl a directory tree and return all files found.

        Args:
            root: Directory to crawl (default: config.root)

        Returns:
            ScanResult with the FileRecords and statistics

        Raises:
            ResourceNotFoundError: root does not exist or is not a directory
        """
        root = Path(root or self.config.root).expanduser().resolve()
        if not root.is_dir():
            raise ResourceNotFoundError(root)

        self._semaphore = asyncio.Semaphore(max(1, self.config.crawler_concurrency))
        self._skipped = 0
        self._errors = 0

        start_time = time.monotonic()
        files = await self._crawl_directory(root, root)
        duration = time.monotonic() - start_time

        logger.info(f"Crawled {len(files)} files under {root} in {duration:.1f}s")

        return ScanResult(
            root=root,
            files=files,
            skipped_count=self._skipped,
            error_count=self._errors,
            duration_seconds=duration,
        )

    async def _crawl_directory(self, root: Path, directory: Path) -> List[FileRecord]:
        """Collect files in `directory`, then crawl its subdirectories concurrently."""
        loop = asyncio.get_running_loop()

        # Only the listing holds a semaphore slot; recursion happens outside it
        async with self._semaphore:
            try:
                files, subdirs, skipped, errors = await loop.run_in_executor(
                    None, self._list_directory, root, directory
                )
            except OSError as e:
                if handle_error(e, directory, "crawl_directory") is ErrorAction.ABORT:
                    raise
                self._errors += 1
                return []

        self._skipped += skipped
        self._errors += errors

        if subdirs:
            nested = await asyncio.gather(
                *(self._crawl_directory(root, subdir) for subdir in subdirs)
            )
            for branch in nested:
                files.extend(branch)

        return files

    def _list_directory(
        self,
        root: Path,
        directory: Path,
    ) -> Tuple[List[FileRecord], List[Path], int, int]:
        """Blocking scandir of a single directory (runs in executor)."""
        files: List[FileRecord] = []
        subdirs: List[Path] = []
        skipped = 0
        errors = 0

        with os.scandir(directory) as entries:
            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if self._should_skip_dir(entry.name):
                            skipped += 1
                            continue
                        subdirs.append(Path(entry.path))

                    elif entry.is_file(follow_symlinks=False):
                        if self._should_skip_file(entry.name):
                            skipped += 1
                            continue
                        files.append(FileRecord.from_location(root, Path(entry.path)))

                except OSError as e:
                    if handle_error(e, Path(entry.path), "crawl_entry") is ErrorAction.ABORT:
                        raise
                    errors += 1

        return files, subdirs, skipped, errors

    def _should_skip_dir(self, name: str) -> bool:
        """Check if a directory should be skipped."""
        if self.config.skip_hidden and name.startswith("."):
            return True

        return name in self.config.skip_dirs

    def _should_skip_file(self, name: str) -> bool:
        """Check if a file should be skipped."""
        # Skip system files
        if name in {".DS_Store", "Thumbs.db", "desktop.ini"}:
            return True

        return self.config.skip_hidden and name.startswith(".")


async def crawl_directory(
    root: Path | None = None,
    config: SearchConfig | None = None,
) -> ScanResult:
    """
    Convenience function to crawl a directory.

    Usage:
        result = await crawl_directory(Path.home() / "notes")
        for record in result.files:
            print(record.path)
    """
    crawler = Crawler(config)
    return await crawler.crawl(root)
