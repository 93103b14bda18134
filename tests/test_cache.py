from __future__ import annotations

import tempfile
import time
import unittest
from pathlib import Path

from worthit_engine.state_store.cache import (
    KIND_CONTENT_ANALYSIS,
    KIND_TRANSCRIPT,
    TIER_DURABLE,
    TIER_MEMORY,
    ArtifactCache,
)
from worthit_engine.state_store.core import FileStateStore


class ArtifactCacheTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = FileStateStore(Path(self._tmp.name) / "state")
        self.cache = ArtifactCache(self.store)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_put_then_get_returns_same_payload(self) -> None:
        payload = {"text": "hello", "nested": {"n": [1, 2, 3]}}
        self.assertTrue(await self.cache.put("dQw4w9WgXcQ", KIND_TRANSCRIPT, payload))
        entry = await self.cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT)
        self.assertEqual(entry.payload, payload)
        self.assertEqual(entry.tier, TIER_MEMORY)

    async def test_survives_memory_tier_clear(self) -> None:
        await self.cache.put("dQw4w9WgXcQ", KIND_TRANSCRIPT, {"text": "hello"})
        self.cache.clear_memory_tier()
        entry = await self.cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT)
        self.assertEqual(entry.payload, {"text": "hello"})
        self.assertEqual(entry.tier, TIER_DURABLE)
        # durable hit repopulates memory
        again = await self.cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT)
        self.assertEqual(again.tier, TIER_MEMORY)

    async def test_clear_all_is_a_miss(self) -> None:
        await self.cache.put("dQw4w9WgXcQ", KIND_TRANSCRIPT, {"text": "hello"})
        await self.cache.clear_all()
        self.assertIsNone(await self.cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT))

    async def test_kinds_are_independent(self) -> None:
        await self.cache.put("dQw4w9WgXcQ", KIND_TRANSCRIPT, {"text": "hello"})
        await self.cache.put("dQw4w9WgXcQ", KIND_CONTENT_ANALYSIS, {"content_id": "dQw4w9WgXcQ"})
        removed = await self.cache.clear_kind(KIND_TRANSCRIPT)
        self.assertEqual(removed, 1)
        self.assertIsNone(await self.cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT))
        self.assertIsNotNone(await self.cache.get("dQw4w9WgXcQ", KIND_CONTENT_ANALYSIS))

    async def test_older_stamp_is_rejected(self) -> None:
        self.assertTrue(await self.cache.put("dQw4w9WgXcQ", KIND_CONTENT_ANALYSIS, {"v": "new"}, stamp=200))
        self.assertFalse(await self.cache.put("dQw4w9WgXcQ", KIND_CONTENT_ANALYSIS, {"v": "old"}, stamp=100))
        entry = await self.cache.get("dQw4w9WgXcQ", KIND_CONTENT_ANALYSIS)
        self.assertEqual(entry.payload, {"v": "new"})
        self.assertEqual(entry.written_at, 200)

    async def test_second_process_sees_durable_writes(self) -> None:
        other = ArtifactCache(FileStateStore(Path(self._tmp.name) / "state"))
        await self.cache.put("dQw4w9WgXcQ", KIND_TRANSCRIPT, {"text": "shared"})
        entry = await other.get("dQw4w9WgXcQ", KIND_TRANSCRIPT)
        self.assertEqual(entry.payload, {"text": "shared"})

    async def test_returned_payload_is_a_copy(self) -> None:
        await self.cache.put("dQw4w9WgXcQ", KIND_TRANSCRIPT, {"text": "hello"})
        entry = await self.cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT)
        entry.payload["text"] = "mutated"
        again = await self.cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT)
        self.assertEqual(again.payload, {"text": "hello"})

    async def test_ttl_expiry_is_a_miss(self) -> None:
        cache = ArtifactCache(self.store, ttl_sec=60)
        old_stamp = int((time.time() - 3600) * 1e9)
        await cache.put("dQw4w9WgXcQ", KIND_TRANSCRIPT, {"text": "stale"}, stamp=old_stamp)
        cache.clear_memory_tier()
        self.assertIsNone(await cache.get("dQw4w9WgXcQ", KIND_TRANSCRIPT))

    async def test_recent_index(self) -> None:
        for vid in ("aaaaaaaaaaa", "bbbbbbbbbbb", "aaaaaaaaaaa"):
            await self.cache.touch_recent(vid)
        self.assertEqual(await self.cache.recent_ids(), ["aaaaaaaaaaa", "bbbbbbbbbbb"])

    async def test_unknown_kind(self) -> None:
        with self.assertRaises(ValueError):
            await self.cache.get("dQw4w9WgXcQ", "thumbnails")


if __name__ == "__main__":
    unittest.main()
