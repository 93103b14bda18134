from __future__ import annotations

import asyncio
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path

from tests.fakes import NY
from worthit_engine.state_store.core import FileStateStore
from worthit_engine.state_store.quota import QuotaGuard


class Clock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


class QuotaGuardTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = FileStateStore(Path(self._tmp.name) / "state")
        self.clock = Clock(datetime(2026, 3, 10, 12, 0, tzinfo=NY))
        self.quota = QuotaGuard(self.store, daily_limit=5, tz=NY, clock=self.clock)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_five_allowed_then_denied(self) -> None:
        for i in range(5):
            decision = await self.quota.check_and_consume("user-1")
            self.assertTrue(decision.allowed)
            self.assertTrue(decision.consumed)
            self.assertEqual(decision.remaining, 4 - i)
        denied = await self.quota.check_and_consume("user-1")
        self.assertFalse(denied.allowed)
        self.assertIsNotNone(denied.paywall)
        self.assertEqual(denied.paywall.quota_reset_at, datetime(2026, 3, 11, 0, 0, tzinfo=NY))
        self.assertEqual((await self.quota.usage("user-1")).consumed_count, 5)

    async def test_check_has_no_side_effects(self) -> None:
        for _ in range(3):
            self.assertTrue((await self.quota.check("user-1")).allowed)
        self.assertEqual((await self.quota.usage("user-1")).consumed_count, 0)
        self.assertEqual(await self.quota.remaining("user-1"), 5)

    async def test_bypass_does_not_touch_record(self) -> None:
        for _ in range(8):
            decision = await self.quota.check_and_consume("user-1", is_subscribed=True)
            self.assertTrue(decision.allowed)
            self.assertTrue(decision.bypass)
        decision = await self.quota.check_and_consume("user-2", is_complimentary=True)
        self.assertTrue(decision.bypass)
        self.assertEqual(self.store.keys("quota"), [])

    async def test_bonus_credits_extend_allowance(self) -> None:
        for _ in range(5):
            await self.quota.check_and_consume("user-1")
        self.assertFalse((await self.quota.check("user-1")).allowed)
        await self.quota.grant_bonus("user-1", 2)
        self.assertTrue((await self.quota.check_and_consume("user-1")).allowed)
        self.assertTrue((await self.quota.check_and_consume("user-1")).allowed)
        self.assertFalse((await self.quota.check_and_consume("user-1")).allowed)

    async def test_resets_on_local_day_boundary(self) -> None:
        for _ in range(5):
            await self.quota.check_and_consume("user-1")
        self.assertFalse((await self.quota.check("user-1")).allowed)
        self.clock.moment = datetime(2026, 3, 11, 0, 1, tzinfo=NY)
        self.assertTrue((await self.quota.check_and_consume("user-1")).allowed)

    async def test_concurrent_consumers_never_overspend(self) -> None:
        other = QuotaGuard(self.store, daily_limit=5, tz=NY, clock=self.clock)
        decisions = await asyncio.gather(*[self.quota.check_and_consume("user-1") for _ in range(4)])
        decisions += await asyncio.gather(*[other.check_and_consume("user-1") for _ in range(4)])
        self.assertEqual(sum(1 for d in decisions if d.allowed), 5)

    async def test_paywall_context_from_ledger(self) -> None:
        self.clock.moment = datetime(2026, 3, 9, 18, 0, tzinfo=NY)
        await self.quota.record_time_saved("user-1", "aaaaaaaaaaa", 12.0)
        self.clock.moment = datetime(2026, 3, 10, 9, 0, tzinfo=NY)
        await self.quota.record_time_saved("user-1", "bbbbbbbbbbb", 7.5)
        await self.quota.record_time_saved("user-1", "bbbbbbbbbbb", 7.5)
        paywall = await self.quota.paywall_context("user-1")
        self.assertEqual(paywall.minutes_saved_today, 7.5)
        self.assertEqual(paywall.minutes_saved_week, 19.5)
        self.assertEqual(paywall.current_streak, 2)
        self.assertEqual(paywall.unique_video_count, 2)
        self.assertEqual(paywall.remaining, 5)

    async def test_streak_survives_until_end_of_next_day(self) -> None:
        self.clock.moment = datetime(2026, 3, 9, 18, 0, tzinfo=NY)
        await self.quota.record_time_saved("user-1", "aaaaaaaaaaa", 3.0)
        self.clock.moment = self.clock.moment + timedelta(days=1)
        self.assertEqual((await self.quota.paywall_context("user-1")).current_streak, 1)
        self.clock.moment = self.clock.moment + timedelta(days=1)
        self.assertEqual((await self.quota.paywall_context("user-1")).current_streak, 0)

    async def test_subscription_flag_on_record_bypasses(self) -> None:
        await self.quota.set_subscription_active("user-1", True)
        for _ in range(7):
            self.assertTrue((await self.quota.check_and_consume("user-1")).allowed)
        self.assertEqual((await self.quota.usage("user-1")).consumed_count, 0)


if __name__ == "__main__":
    unittest.main()
