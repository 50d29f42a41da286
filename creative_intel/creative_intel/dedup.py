"""
Content-hash deduplication for still creatives.

A ``DedupIndex`` lives for exactly one scheduler run. It is seeded from every
ad already in ``tagged`` state with a stored hash and grows as the run tags
new creatives, so duplicates later in the same batch reuse the first result.

Thread-safety: ``lookup`` takes no lock (a single dict read); ``add`` holds a
lock and keeps the first entry for a hash. A lookup racing an add may miss,
which costs one extra model call and never corrupts the index.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


def compute_content_hash(data: bytes) -> str:
    """SHA-256 hex digest of a creative's image bytes."""
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class DedupEntry:
    ad_id: str
    tags: Mapping[str, str]


class DedupIndex:
    """Maps content hash -> (source ad id, tag set)."""

    def __init__(self) -> None:
        self._entries: Dict[str, DedupEntry] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "DedupIndex":
        """Seed from store rows with ``content_hash``, ``ad_id`` and ``tags``."""
        index = cls()
        for row in rows:
            content_hash = row.get("content_hash")
            tags = row.get("tags")
            if not content_hash or not tags:
                continue
            index.add(content_hash, str(row["ad_id"]), tags)
        logger.info("Dedup index seeded with %d hashes", len(index))
        return index

    def lookup(self, content_hash: Optional[str]) -> Optional[DedupEntry]:
        if not content_hash:
            return None
        return self._entries.get(content_hash)

    def add(self, content_hash: str, ad_id: str, tags: Mapping[str, str]) -> bool:
        """Record a tag set; returns False if the hash was already present."""
        frozen = MappingProxyType(dict(tags))
        with self._lock:
            if content_hash in self._entries:
                return False
            self._entries[content_hash] = DedupEntry(ad_id=ad_id, tags=frozen)
            return True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, content_hash: object) -> bool:
        return content_hash in self._entries
