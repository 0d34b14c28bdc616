"""
In-process LRU + TTL cache for entity access decisions.
"""

import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Union

from shared.logging import get_logger
from ..policies.models import CacheKey, EntityAccessResult

DEFAULT_MAX_SIZE = 10000
DEFAULT_TTL_SECONDS = 300.0


class AccessCache:
    """Bounded decision cache.

    Entries expire ``ttl_seconds`` after the result's ``evaluated_at`` and
    the least recently used entry is evicted when a new key arrives at
    capacity. All operations are synchronous, so under a single event loop
    no other coroutine can observe a half-applied mutation.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.logger = get_logger("entity_access.cache")
        self._entries: "OrderedDict[CacheKey, EntityAccessResult]" = OrderedDict()

    def get(self, key: CacheKey) -> Optional[EntityAccessResult]:
        """Fresh result for ``key`` or None. A hit becomes most recently used."""
        result = self._entries.get(key)
        if result is None:
            return None

        if self.clock() - result.evaluated_at >= self.ttl_seconds:
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return result

    def set(self, key: CacheKey, result: EntityAccessResult) -> None:
        """Insert or replace ``key``, evicting the LRU entry if full."""
        if key in self._entries:
            self._entries[key] = result
            self._entries.move_to_end(key)
            return

        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug("Evicted cache entry", key=evicted.format())

        self._entries[key] = result

    def invalidate(
        self,
        principal_id: Optional[str] = None,
        policy_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> int:
        """Drop entries matching every given field; returns how many.

        Unspecified fields are wildcards. With no field given nothing is
        removed: wiping the cache takes an explicit ``clear()``.
        """
        if principal_id is None and policy_id is None and entity_id is None:
            return 0

        matches = [
            key for key in self._entries
            if (principal_id is None or key.principal_id == principal_id)
            and (policy_id is None or key.policy_id == policy_id)
            and (entity_id is None or key.entity_id == entity_id)
        ]
        for key in matches:
            del self._entries[key]

        return len(matches)

    def clear(self) -> int:
        """Remove everything; returns how many entries were dropped."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> Dict[str, Union[int, float]]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_ms": int(self.ttl_seconds * 1000),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
