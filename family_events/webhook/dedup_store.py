"""Processed-message cache for webhook idempotence.

Tracks provider message ids (Gmail message id, Twilio MessageSid) that were
already handled, plus the ids currently in flight, so a redelivered push is
skipped. The cache is bounded: once it grows past ``max_size`` the oldest
entries are dropped. Eviction is safe because the approval ledger closes a
request with a compare-and-set, so a re-handled reply changes nothing.
"""

import asyncio
from collections import OrderedDict

from family_events.config import PROCESSED_CACHE_MAX
from family_events.utils.logger import get_logger

logger = get_logger("family_events.webhook.dedup_store")


class ProcessedMessageCache:
    """asyncio-safe bounded set of handled message ids."""

    def __init__(self, max_size: int = PROCESSED_CACHE_MAX):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._lock = asyncio.Lock()
        self._processed: OrderedDict[str, None] = OrderedDict()
        self._in_flight: set[str] = set()

    def __len__(self) -> int:
        return len(self._processed)

    @property
    def max_size(self) -> int:
        return self._max_size

    async def contains(self, message_id: str) -> bool:
        async with self._lock:
            return message_id in self._processed

    async def add(self, message_id: str) -> bool:
        """Mark message_id processed. Returns True if newly added."""
        async with self._lock:
            self._in_flight.discard(message_id)
            if message_id in self._processed:
                return False
            self._processed[message_id] = None
            self._evict()
            return True

    async def claim(self, message_id: str) -> bool:
        """Reserve message_id for handling. False if already processed or being handled."""
        async with self._lock:
            if message_id in self._processed or message_id in self._in_flight:
                return False
            self._in_flight.add(message_id)
            return True

    async def release(self, message_id: str) -> None:
        """Drop an in-flight reservation without marking processed (handling failed)."""
        async with self._lock:
            self._in_flight.discard(message_id)

    def _evict(self) -> None:
        """Drop oldest entries beyond max_size. Caller holds _lock."""
        evicted = 0
        while len(self._processed) > self._max_size:
            self._processed.popitem(last=False)
            evicted += 1
        if evicted:
            logger.debug("dedup_store.evicted", evicted=evicted, size=len(self._processed))
