#!/usr/bin/env python3
"""
Spotlight Downloader - Deduplication

Removes images whose source URI was already seen in the same result set.
URIs are compared case-insensitively and the first occurrence wins.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Set

from spotlight_parser import ImageRecord

logger = logging.getLogger("spotlight_downloader")


@dataclass
class SeenUrlIndex:
    """Case-insensitive set of source URIs already retained."""
    seen_urls: Set[str] = field(default_factory=set)

    @staticmethod
    def _key(url: str) -> str:
        return url.lower()

    def has_url(self, url: str) -> bool:
        """Check if URL has been seen."""
        return self._key(url) in self.seen_urls

    def add_url(self, url: str) -> bool:
        """Add a URL. Returns False if it was already present."""
        key = self._key(url)
        if key in self.seen_urls:
            return False
        self.seen_urls.add(key)
        return True

    def __len__(self) -> int:
        return len(self.seen_urls)


def deduplicate_records(
    records: Iterable[ImageRecord],
    index: Optional[SeenUrlIndex] = None,
) -> list[ImageRecord]:
    """
    Drop records with an empty URI or a URI already retained.

    Args:
        records: Records in source order.
        index: Optional index to share across calls. A fresh one is used by default.

    Returns:
        Retained records in their original relative order.
    """
    index = index if index is not None else SeenUrlIndex()
    unique = []
    dropped = 0

    for record in records:
        if record.source_uri and index.add_url(record.source_uri):
            unique.append(record)
        else:
            dropped += 1

    if dropped:
        logger.debug(f"Dedup: {dropped} duplicate or empty image URI(s) removed, {len(unique)} kept")
    return unique
