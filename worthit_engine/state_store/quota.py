from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from worthit_utils import date_key, next_local_midnight, parse_date_key

from .core import NS_LEDGER, NS_QUOTA

logger = logging.getLogger(__name__)


@dataclass
class UsageRecord:
    owner_scope: str
    date_key: str
    consumed_count: int = 0
    bonus_credits: int = 0
    subscription_active: bool = False

    @classmethod
    def from_dict(cls, owner_scope: str, day: str, raw) -> "UsageRecord":
        data = raw if isinstance(raw, dict) else {}

        def _count(name: str) -> int:
            try:
                return max(0, int(data.get(name) or 0))
            except (TypeError, ValueError):
                return 0

        return cls(
            owner_scope=owner_scope,
            date_key=day,
            consumed_count=_count("consumed_count"),
            bonus_credits=_count("bonus_credits"),
            subscription_active=bool(data.get("subscription_active")),
        )

    def to_dict(self) -> dict:
        return {
            "consumed_count": int(self.consumed_count),
            "bonus_credits": int(self.bonus_credits),
            "subscription_active": bool(self.subscription_active),
        }

    def allowance(self, daily_limit: int) -> int:
        return int(daily_limit) + int(self.bonus_credits)

    def remaining(self, daily_limit: int) -> int:
        return max(0, self.allowance(daily_limit) - self.consumed_count)


@dataclass(frozen=True)
class PaywallContext:
    minutes_saved_today: float
    minutes_saved_week: float
    current_streak: int
    unique_video_count: int
    quota_reset_at: datetime
    daily_limit: int
    remaining: int

    def to_dict(self) -> dict:
        out = asdict(self)
        out["quota_reset_at"] = self.quota_reset_at.isoformat()
        return out


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: Optional[int]
    consumed: bool = False
    bypass: bool = False
    paywall: Optional[PaywallContext] = None


def _ledger_rows(raw) -> List[dict]:
    if not isinstance(raw, dict):
        return []
    rows = raw.get("rows")
    return [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []


class QuotaGuard:
    """Daily free-analysis allowance per owner scope.

    All writes from this process go through one asyncio lock and then through
    the state store's atomic update, so two host processes pointed at the same
    storage never see a half-written record.
    """

    def __init__(
        self,
        store,
        *,
        daily_limit: int,
        tz: ZoneInfo,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.daily_limit = max(0, int(daily_limit))
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(tz))
        self._lock = asyncio.Lock()

    def _today(self) -> str:
        return date_key(self._clock(), self.tz)

    @staticmethod
    def _key(owner_scope: str, day: str) -> str:
        owner = str(owner_scope or "").strip()
        if not owner:
            raise ValueError("owner_scope is required")
        return f"{owner}/{day}"

    async def usage(self, owner_scope: str) -> UsageRecord:
        day = self._today()
        stored = await asyncio.to_thread(self.store.read, NS_QUOTA, self._key(owner_scope, day))
        return UsageRecord.from_dict(owner_scope, day, stored.value if stored else None)

    async def remaining(self, owner_scope: str) -> int:
        record = await self.usage(owner_scope)
        return record.remaining(self.daily_limit)

    async def check(
        self,
        owner_scope: str,
        is_subscribed: bool = False,
        is_complimentary: bool = False,
    ) -> QuotaDecision:
        """Same answer check_and_consume would give, without spending anything."""
        if is_subscribed or is_complimentary:
            return QuotaDecision(allowed=True, remaining=None, bypass=True)
        record = await self.usage(owner_scope)
        if record.subscription_active:
            return QuotaDecision(allowed=True, remaining=None, bypass=True)
        remaining = record.remaining(self.daily_limit)
        if remaining > 0:
            return QuotaDecision(allowed=True, remaining=remaining)
        paywall = await self.paywall_context(owner_scope, record=record)
        return QuotaDecision(allowed=False, remaining=0, paywall=paywall)

    async def check_and_consume(
        self,
        owner_scope: str,
        is_subscribed: bool = False,
        is_complimentary: bool = False,
    ) -> QuotaDecision:
        if is_subscribed or is_complimentary:
            return QuotaDecision(allowed=True, remaining=None, bypass=True)

        day = self._today()
        key = self._key(owner_scope, day)
        limit = self.daily_limit

        def _mutate(current):
            record = UsageRecord.from_dict(owner_scope, day, current)
            if record.subscription_active:
                return None, ("bypass", record)
            if record.consumed_count < record.allowance(limit):
                record.consumed_count += 1
                return record.to_dict(), ("consumed", record)
            return None, ("denied", record)

        async with self._lock:
            outcome, record = await asyncio.to_thread(self.store.update, NS_QUOTA, key, _mutate)

        if outcome == "bypass":
            return QuotaDecision(allowed=True, remaining=None, bypass=True)
        if outcome == "consumed":
            remaining = record.remaining(limit)
            logger.info(
                "Usage consumed: owner=%s day=%s used=%s/%s remaining=%s",
                owner_scope,
                day,
                record.consumed_count,
                record.allowance(limit),
                remaining,
            )
            return QuotaDecision(allowed=True, remaining=remaining, consumed=True)

        logger.warning(
            "Quota exceeded: owner=%s day=%s used=%s limit=%s bonus=%s",
            owner_scope,
            day,
            record.consumed_count,
            limit,
            record.bonus_credits,
        )
        paywall = await self.paywall_context(owner_scope, record=record)
        return QuotaDecision(allowed=False, remaining=0, paywall=paywall)

    async def grant_bonus(self, owner_scope: str, credits: int) -> UsageRecord:
        amount = int(credits)
        if amount <= 0:
            raise ValueError("credits must be positive")
        day = self._today()

        def _mutate(current):
            record = UsageRecord.from_dict(owner_scope, day, current)
            record.bonus_credits += amount
            return record.to_dict(), record

        async with self._lock:
            record = await asyncio.to_thread(self.store.update, NS_QUOTA, self._key(owner_scope, day), _mutate)
        logger.info("Granted %s bonus credit(s) to %s for %s", amount, owner_scope, day)
        return record

    async def set_subscription_active(self, owner_scope: str, active: bool) -> UsageRecord:
        day = self._today()

        def _mutate(current):
            record = UsageRecord.from_dict(owner_scope, day, current)
            record.subscription_active = bool(active)
            return record.to_dict(), record

        async with self._lock:
            return await asyncio.to_thread(self.store.update, NS_QUOTA, self._key(owner_scope, day), _mutate)

    async def record_time_saved(self, owner_scope: str, content_id: str, minutes: float) -> None:
        """One ledger row per (day, content id); replays on the same day do not add up."""
        day = self._today()
        mins = max(0.0, round(float(minutes or 0.0), 2))

        def _mutate(current):
            rows = _ledger_rows(current)
            for row in rows:
                if row.get("date") == day and row.get("id") == content_id:
                    if mins <= float(row.get("minutes") or 0.0):
                        return None, False
                    row["minutes"] = mins
                    return {"rows": rows}, True
            rows.append({"date": day, "id": content_id, "minutes": mins})
            return {"rows": rows}, True

        owner = str(owner_scope or "").strip()
        if not owner:
            raise ValueError("owner_scope is required")
        async with self._lock:
            await asyncio.to_thread(self.store.update, NS_LEDGER, owner, _mutate)

    async def paywall_context(self, owner_scope: str, *, record: Optional[UsageRecord] = None) -> PaywallContext:
        now = self._clock()
        if record is None:
            record = await self.usage(owner_scope)
        stored = await asyncio.to_thread(self.store.read, NS_LEDGER, str(owner_scope or "").strip())
        rows = _ledger_rows(stored.value if stored else None)

        today = now.astimezone(self.tz).date()
        week_start = today - timedelta(days=6)
        per_day: Dict[object, float] = {}
        unique_ids = set()
        for row in rows:
            day = parse_date_key(row.get("date"))
            if day is None:
                continue
            try:
                minutes = float(row.get("minutes") or 0.0)
            except (TypeError, ValueError):
                minutes = 0.0
            per_day[day] = per_day.get(day, 0.0) + minutes
            if row.get("id"):
                unique_ids.add(str(row["id"]))

        streak = 0
        cursor = today if today in per_day else today - timedelta(days=1)
        while cursor in per_day:
            streak += 1
            cursor -= timedelta(days=1)

        return PaywallContext(
            minutes_saved_today=round(per_day.get(today, 0.0), 1),
            minutes_saved_week=round(sum(v for d, v in per_day.items() if week_start <= d <= today), 1),
            current_streak=streak,
            unique_video_count=len(unique_ids),
            quota_reset_at=next_local_midnight(now, self.tz),
            daily_limit=self.daily_limit,
            remaining=record.remaining(self.daily_limit),
        )
