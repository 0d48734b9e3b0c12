"""Tests for the processed-message cache."""

import asyncio
import unittest

import helpers  # noqa: F401

from family_events.webhook.dedup_store import ProcessedMessageCache


class TestProcessedMessageCache(unittest.TestCase):
    def test_claim_then_add(self):
        cache = ProcessedMessageCache(max_size=10)

        async def run():
            self.assertTrue(await cache.claim("m1"))
            # In flight: a concurrent delivery is refused
            self.assertFalse(await cache.claim("m1"))
            self.assertFalse(await cache.contains("m1"))
            self.assertTrue(await cache.add("m1"))
            self.assertTrue(await cache.contains("m1"))
            self.assertFalse(await cache.claim("m1"))
            self.assertFalse(await cache.add("m1"))

        asyncio.run(run())

    def test_release_allows_retry(self):
        cache = ProcessedMessageCache(max_size=10)

        async def run():
            await cache.claim("m1")
            await cache.release("m1")
            self.assertTrue(await cache.claim("m1"))

        asyncio.run(run())

    def test_oldest_entries_evicted(self):
        cache = ProcessedMessageCache(max_size=3)

        async def run():
            for i in range(5):
                await cache.add(f"m{i}")
            self.assertEqual(len(cache), 3)
            self.assertFalse(await cache.contains("m0"))
            self.assertFalse(await cache.contains("m1"))
            self.assertTrue(await cache.contains("m4"))

        asyncio.run(run())

    def test_concurrent_claims_single_winner(self):
        cache = ProcessedMessageCache(max_size=10)

        async def run():
            results = await asyncio.gather(*(cache.claim("m1") for _ in range(20)))
            self.assertEqual(sum(results), 1)

        asyncio.run(run())

    def test_invalid_size(self):
        with self.assertRaises(ValueError):
            ProcessedMessageCache(max_size=0)


if __name__ == "__main__":
    unittest.main()
