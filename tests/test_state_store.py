from __future__ import annotations

import os
import tempfile
import unittest
import uuid
from pathlib import Path

from worthit_engine.state_store.core import FileStateStore, PostgresStateStore, open_state_store


class FileStateStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = FileStateStore(Path(self._tmp.name))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_write_read_and_keys(self) -> None:
        self.store.write("quota", "user:1/2026-03-10", {"consumed_count": 1}, stamp=5)
        stored = self.store.read("quota", "user:1/2026-03-10")
        self.assertEqual(stored.value, {"consumed_count": 1})
        self.assertEqual(stored.stamp, 5)
        self.assertEqual(self.store.keys("quota"), ["user:1/2026-03-10"])
        self.assertEqual(self.store.keys("quota", prefix="other"), [])

    def test_only_if_newer(self) -> None:
        self.assertTrue(self.store.write("artifacts", "x/contentAnalysis", "b", stamp=20, only_if_newer=True))
        self.assertFalse(self.store.write("artifacts", "x/contentAnalysis", "a", stamp=10, only_if_newer=True))
        self.assertTrue(self.store.write("artifacts", "x/contentAnalysis", "c", stamp=20, only_if_newer=True))
        self.assertEqual(self.store.read("artifacts", "x/contentAnalysis").value, "c")

    def test_update_skips_write_when_mutator_returns_none(self) -> None:
        result = self.store.update("ledger", "user-1", lambda current: (None, "unchanged"))
        self.assertEqual(result, "unchanged")
        self.assertIsNone(self.store.read("ledger", "user-1"))

    def test_no_temp_files_left_behind(self) -> None:
        for i in range(5):
            self.store.write("artifacts", "x/transcript", {"i": i})
        leftovers = [p for p in Path(self._tmp.name).rglob("*.tmp")]
        self.assertEqual(leftovers, [])

    def test_clear_and_delete(self) -> None:
        self.store.write("artifacts", "a/transcript", 1)
        self.store.write("artifacts", "b/transcript", 2)
        self.assertTrue(self.store.delete("artifacts", "a/transcript"))
        self.assertFalse(self.store.delete("artifacts", "a/transcript"))
        self.assertEqual(self.store.clear("artifacts"), 1)
        self.assertEqual(self.store.keys("artifacts"), [])

    def test_open_state_store_defaults_to_files(self) -> None:
        store = open_state_store(Path(self._tmp.name))
        self.assertIsInstance(store, FileStateStore)


@unittest.skipUnless(os.getenv("WORTHIT_TEST_DSN"), "set WORTHIT_TEST_DSN to run PostgreSQL store tests")
class PostgresStateStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = PostgresStateStore(os.environ["WORTHIT_TEST_DSN"])
        self.ns = f"test-{uuid.uuid4().hex[:8]}"

    def tearDown(self) -> None:
        self.store.clear(self.ns)

    def test_conditional_write_and_update(self) -> None:
        self.assertTrue(self.store.write(self.ns, "k", {"v": 2}, stamp=20, only_if_newer=True))
        self.assertFalse(self.store.write(self.ns, "k", {"v": 1}, stamp=10, only_if_newer=True))
        self.assertEqual(self.store.read(self.ns, "k").value, {"v": 2})
        result = self.store.update(self.ns, "counter", lambda cur: ({"n": (cur or {}).get("n", 0) + 1}, "ok"))
        self.assertEqual(result, "ok")
        self.assertEqual(self.store.read(self.ns, "counter").value, {"n": 1})
        self.assertEqual(self.store.keys(self.ns), ["counter", "k"])

    def test_lock_round_trip(self) -> None:
        scope = f"{self.ns}:lock"
        self.assertTrue(self.store.try_lock(scope, "t1", 60))
        self.assertFalse(self.store.try_lock(scope, "t2", 60))
        self.assertTrue(self.store.unlock(scope, "t1"))
        self.assertTrue(self.store.try_lock(scope, "t2", 60))
        self.assertTrue(self.store.unlock(scope, "t2"))


if __name__ == "__main__":
    unittest.main()
