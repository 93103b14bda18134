from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .core import NS_ARTIFACTS

logger = logging.getLogger(__name__)

KIND_TRANSCRIPT = "transcript"
KIND_RAW_COMMENTS = "rawComments"
KIND_CONTENT_ANALYSIS = "contentAnalysis"
KIND_COMMENT_INSIGHTS = "commentInsights"
KIND_QA_HISTORY = "qaHistory"
KIND_RECENT_INDEX = "recentIndex"

ARTIFACT_KINDS = (
    KIND_TRANSCRIPT,
    KIND_RAW_COMMENTS,
    KIND_CONTENT_ANALYSIS,
    KIND_COMMENT_INSIGHTS,
    KIND_QA_HISTORY,
    KIND_RECENT_INDEX,
)

# "~" never appears in a video id, so this cannot collide with real content.
RECENT_INDEX_OWNER = "~recent"

TIER_MEMORY = "memory"
TIER_DURABLE = "durable"


@dataclass(frozen=True)
class CacheEntry:
    content_id: str
    kind: str
    payload: Any
    written_at: int
    tier: str

    def age_sec(self, now: Optional[float] = None) -> float:
        return max(0.0, (now if now is not None else time.time()) - self.written_at / 1e9)


def _artifact_key(content_id: str, kind: str) -> str:
    if kind not in ARTIFACT_KINDS:
        raise ValueError(f"unknown artifact kind: {kind!r}")
    cid = str(content_id or "").strip()
    if not cid or "/" in cid:
        raise ValueError(f"invalid content id for cache key: {content_id!r}")
    return f"{cid}/{kind}"


class ArtifactCache:
    """Two-tier artifact cache.

    The durable tier (a state store shared with the other host process) is the
    source of truth. The memory tier only accelerates reads inside this
    process and starts empty on every launch.
    """

    def __init__(self, store, *, ttl_sec: float = 0.0, recent_limit: int = 50) -> None:
        self.store = store
        self.ttl_sec = max(0.0, float(ttl_sec or 0.0))
        self.recent_limit = max(1, int(recent_limit))
        self._memory: Dict[Tuple[str, str], CacheEntry] = {}
        self._write_lock = asyncio.Lock()

    def _expired(self, entry: CacheEntry) -> bool:
        return self.ttl_sec > 0 and entry.age_sec() > self.ttl_sec

    async def get(self, content_id: str, kind: str) -> Optional[CacheEntry]:
        key = _artifact_key(content_id, kind)
        mem = self._memory.get((content_id, kind))
        if mem is not None:
            if not self._expired(mem):
                return CacheEntry(content_id, kind, copy.deepcopy(mem.payload), mem.written_at, TIER_MEMORY)
            self._memory.pop((content_id, kind), None)

        stored = await asyncio.to_thread(self.store.read, NS_ARTIFACTS, key)
        if stored is None:
            return None
        entry = CacheEntry(content_id, kind, stored.value, stored.stamp, TIER_DURABLE)
        if self._expired(entry):
            logger.debug("Cached %s for %s is past its TTL", kind, content_id)
            return None
        current = self._memory.get((content_id, kind))
        if current is None or current.written_at <= entry.written_at:
            self._memory[(content_id, kind)] = CacheEntry(
                content_id, kind, copy.deepcopy(stored.value), stored.stamp, TIER_MEMORY
            )
        return entry

    async def put(self, content_id: str, kind: str, payload: Any, *, stamp: Optional[int] = None) -> bool:
        """Persist durably, then update memory.

        Returns False when the durable tier already holds a newer write for
        the same key; in that case nothing changes. Durable errors propagate
        and leave the memory tier untouched.
        """
        key = _artifact_key(content_id, kind)
        written_at = int(stamp if stamp is not None else time.time_ns())
        snapshot = copy.deepcopy(payload)
        async with self._write_lock:
            written = await asyncio.to_thread(
                self.store.write,
                NS_ARTIFACTS,
                key,
                snapshot,
                stamp=written_at,
                only_if_newer=True,
            )
            if not written:
                logger.info("Skipped stale %s write for %s (stamp %s)", kind, content_id, written_at)
                # Memory may be behind the durable tier; let the next read reload it.
                self._memory.pop((content_id, kind), None)
                return False
            self._memory[(content_id, kind)] = CacheEntry(content_id, kind, snapshot, written_at, TIER_MEMORY)
        return True

    async def delete(self, content_id: str, kind: str) -> bool:
        key = _artifact_key(content_id, kind)
        async with self._write_lock:
            self._memory.pop((content_id, kind), None)
            return await asyncio.to_thread(self.store.delete, NS_ARTIFACTS, key)

    def clear_memory_tier(self) -> None:
        self._memory.clear()

    async def clear_kind(self, kind: str) -> int:
        if kind not in ARTIFACT_KINDS:
            raise ValueError(f"unknown artifact kind: {kind!r}")
        async with self._write_lock:
            for mem_key in [k for k in self._memory if k[1] == kind]:
                self._memory.pop(mem_key, None)
            keys = await asyncio.to_thread(self.store.keys, NS_ARTIFACTS)
            removed = 0
            for key in keys:
                if key.rsplit("/", 1)[-1] != kind:
                    continue
                if await asyncio.to_thread(self.store.delete, NS_ARTIFACTS, key):
                    removed += 1
        return removed

    async def clear_all(self) -> int:
        async with self._write_lock:
            self._memory.clear()
            return await asyncio.to_thread(self.store.clear, NS_ARTIFACTS)

    async def recent_ids(self) -> List[str]:
        entry = await self.get(RECENT_INDEX_OWNER, KIND_RECENT_INDEX)
        if entry is None or not isinstance(entry.payload, list):
            return []
        return [str(row.get("id")) for row in entry.payload if isinstance(row, dict) and row.get("id")]

    async def touch_recent(self, content_id: str) -> None:
        key = _artifact_key(RECENT_INDEX_OWNER, KIND_RECENT_INDEX)
        limit = self.recent_limit

        def _mutate(current):
            rows = current if isinstance(current, list) else []
            rows = [r for r in rows if isinstance(r, dict) and r.get("id") != content_id]
            rows.insert(0, {"id": content_id, "at": int(time.time())})
            rows = rows[:limit]
            return rows, rows

        async with self._write_lock:
            await asyncio.to_thread(self.store.update, NS_ARTIFACTS, key, _mutate)
            self._memory.pop((RECENT_INDEX_OWNER, KIND_RECENT_INDEX), None)
