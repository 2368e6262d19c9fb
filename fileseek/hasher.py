"""
Hasher - Content digests for change detection.

Every file is hashed over the canonical string ``path + "\\n\\n" + content``
using xxHash (XXH3, 128-bit). Files that cannot be read as UTF-8 text are
hashed over their path instead, so a digest is always available; such
digests are tagged PATH_FALLBACK and byte-level changes to those files
go undetected.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Tuple

import xxhash

from .config import get_config, SearchConfig
from .errors import ErrorAction, READ_ERROR_POLICIES, handle_error
from .models import ContentDigest, DigestSource, FileRecord, HashedFile


logger = logging.getLogger(__name__)

SEPARATOR = "\n\n"


def canonical_text(path: str, content: str) -> str:
    """The string that is both hashed and embedded for a file."""
    return f"{path}{SEPARATOR}{content}"


def compute_digest(path: str, content: str) -> str:
    """Hex digest of the canonical text for (path, content)."""
    return xxhash.xxh3_128_hexdigest(canonical_text(path, content).encode("utf-8"))


def read_content(record: FileRecord) -> Tuple[str, DigestSource]:
    """
    Read a file as UTF-8 text.

    Line endings are kept as they are on disk. Falls back to the
    record's path when the bytes are not valid text or the file cannot
    be read at all.
    """
    try:
        return record.location.read_bytes().decode("utf-8"), DigestSource.CONTENT
    except (UnicodeDecodeError, OSError) as e:
        action = handle_error(e, record.location, "read_content", READ_ERROR_POLICIES)
        if action is not ErrorAction.FALLBACK:
            raise
        return record.path, DigestSource.PATH_FALLBACK


def hash_record(record: FileRecord) -> HashedFile:
    """Read and hash a single file (blocking)."""
    content, source = read_content(record)
    return HashedFile(
        record=record,
        digest=ContentDigest(value=compute_digest(record.path, content), source=source),
        text=canonical_text(record.path, content),
    )


class Hasher:
    """
    Parallel content hasher.

    File reads happen in a thread pool; results come back in the same
    order as the input records.
    """

    def __init__(self, config: SearchConfig | None = None):
        self.config = config or get_config()
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, self.config.hasher_concurrency),
                thread_name_prefix="hasher"
            )
        return self._executor

    async def hash_files(self, records: Iterable[FileRecord]) -> List[HashedFile]:
        """
        Hash multiple files in parallel.

        Args:
            records: Files to hash

        Returns:
            One HashedFile per record
        """
        records = list(records)
        if not records:
            return []

        loop = asyncio.get_running_loop()
        executor = self._get_executor()

        hashed = await asyncio.gather(*(
            loop.run_in_executor(executor, hash_record, record)
            for record in records
        ))

        fallbacks = sum(1 for h in hashed if h.digest.is_fallback)
        logger.info(f"Hashed {len(hashed)} files ({fallbacks} by path only)")

        return list(hashed)

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


async def hash_files(
    records: Iterable[FileRecord],
    config: SearchConfig | None = None,
) -> List[HashedFile]:
    """
    Convenience function to hash files.

    Usage:
        hashed = await hash_files(scan_result.files)
        for h in hashed:
            print(h.path, h.digest.value)
    """
    hasher = Hasher(config)
    try:
        return await hasher.hash_files(records)
    finally:
        hasher.close()
