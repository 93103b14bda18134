from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from worthit_config import LOCAL_TZ, USAGE_RETENTION_DAYS
from worthit_engine.state_store.core import NS_ARTIFACTS, NS_LEDGER, NS_QUOTA
from worthit_utils import date_key, parse_date_key

logger = logging.getLogger(__name__)


def prune_usage_records(
    store,
    retention_days: int = USAGE_RETENTION_DAYS,
    *,
    tz: ZoneInfo = LOCAL_TZ,
    now: Optional[datetime] = None,
) -> int:
    """Delete daily usage records and time-saved ledger rows older than the retention window."""
    cutoff = parse_date_key(date_key(now, tz)) - timedelta(days=max(1, int(retention_days)))
    removed = 0

    for key in store.keys(NS_QUOTA):
        day = parse_date_key(key.rsplit("/", 1)[-1])
        if day is None or day >= cutoff:
            continue
        if store.delete(NS_QUOTA, key):
            removed += 1

    def _trim(current):
        rows = current.get("rows") if isinstance(current, dict) else None
        if not isinstance(rows, list):
            return None, 0
        kept = []
        for row in rows:
            day = parse_date_key(row.get("date")) if isinstance(row, dict) else None
            if day is not None and day >= cutoff:
                kept.append(row)
        if len(kept) == len(rows):
            return None, 0
        return {"rows": kept}, len(rows) - len(kept)

    for owner in store.keys(NS_LEDGER):
        removed += store.update(NS_LEDGER, owner, _trim)
    return removed


def prune_expired_artifacts(store, ttl_sec: float, *, now: Optional[float] = None) -> int:
    if ttl_sec <= 0:
        return 0
    cutoff_ns = int(((now if now is not None else time.time()) - float(ttl_sec)) * 1e9)
    removed = 0
    for key in store.keys(NS_ARTIFACTS):
        stored = store.read(NS_ARTIFACTS, key)
        if stored is None or stored.stamp >= cutoff_ns:
            continue
        if store.delete(NS_ARTIFACTS, key):
            removed += 1
    return removed


async def cleanup_loop(runtime, *, initial_delay_sec: float = 30.0, interval_sec: float = 24 * 3600) -> None:
    await asyncio.sleep(initial_delay_sec)
    while True:
        try:
            n = await asyncio.to_thread(
                prune_usage_records,
                runtime.store,
                USAGE_RETENTION_DAYS,
                tz=runtime.settings.local_tz,
            )
            m = await asyncio.to_thread(prune_expired_artifacts, runtime.store, runtime.settings.cache_ttl_sec)
            if n or m:
                logger.info("Cleanup removed %s usage row(s) and %s expired artifact(s)", n, m)
                runtime.cache.clear_memory_tier()
        except Exception:
            logger.exception("Cleanup pass failed")
        await asyncio.sleep(interval_sec)
