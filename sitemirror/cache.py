"""
SiteMirror - Response Cache
Time- and size-bounded cache of fully processed responses.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple


logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A rewritten response ready to be replayed to a client."""
    canonical_url: str
    body: bytes
    headers: List[Tuple[str, str]]
    status_code: int = 200
    inserted_at: float = field(default_factory=time.monotonic)


class ResponseCache:
    """
    Insertion-ordered response cache keyed by canonical target URL.

    Expired entries are dropped when read; once the entry count reaches
    ``capacity`` the oldest inserted entry is evicted (not least recently
    used). All access is serialized by one lock.

    The read / fetch / write sequence in the request handler is not
    transactional: concurrent misses for the same URL each fetch upstream
    and the last writer wins (cache stampede).
    """

    def __init__(self, ttl: float = 3600, capacity: int = 500, enabled: bool = True,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.capacity = capacity
        self.enabled = enabled
        self._clock = clock
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[CacheEntry]:
        """
        Look up a cached response.

        Args:
            url: Canonical target URL

        Returns:
            The entry, or None when absent, expired or caching is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            if self._clock() - entry.inserted_at > self.ttl:
                del self._entries[url]
                logger.debug("Cache entry expired: %s", url)
                return None
            return entry

    def put(self, url: str, entry: CacheEntry) -> None:
        """
        Store a response, evicting the oldest insertion when full.

        Args:
            url: Canonical target URL
            entry: Processed response
        """
        if not self.enabled or self.capacity <= 0:
            return

        entry.inserted_at = self._clock()
        with self._lock:
            self._entries.pop(url, None)
            while len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache full, evicted %s", evicted)
            self._entries[url] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return url in self._entries
