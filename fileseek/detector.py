"""
Change Detector - Decide which files need (re-)embedding.

Compares freshly computed digests with the hashes persisted in the
store. Persisted state is fetched with one bulk query per run, never
per file.
"""

import logging
from typing import Iterable, Mapping, TYPE_CHECKING

from .models import ChangeSet, HashedFile

if TYPE_CHECKING:
    from .store import IndexStore


logger = logging.getLogger(__name__)


class ChangeDetector:
    """Content-addressed change detection against an IndexStore."""

    @staticmethod
    def diff(existing: Mapping[str, str], candidates: Iterable[HashedFile]) -> ChangeSet:
        """
        Return every candidate that is new or whose digest differs.

        Args:
            existing: path -> hash as currently persisted
            candidates: hashed files from the current crawl, unique by path
        """
        changed = [
            candidate for candidate in candidates
            if existing.get(candidate.path) != candidate.digest.value
        ]
        return ChangeSet(changed)

    def detect(self, store: "IndexStore", candidates: Iterable[HashedFile]) -> ChangeSet:
        """
        Compute the ChangeSet for `candidates` against `store`.

        An empty candidate set returns immediately without querying
        the store.
        """
        # Last occurrence wins if the same path shows up twice
        unique = {c.path: c for c in candidates}
        if not unique:
            logger.debug("No candidates, nothing to diff")
            return ChangeSet()

        existing = store.existing_hashes()
        changes = self.diff(existing, unique.values())

        logger.info(
            f"Change detection: {len(changes)} new or modified, "
            f"{len(unique) - len(changes)} unchanged"
        )
        return changes
