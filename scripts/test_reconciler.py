from __future__ import annotations

import logging
import unittest

from fakes import FakeChain, FakeSubmitter, InMemoryStore, make_request

from forced_exit.sender.reconciler import UnconfirmedRequestReconciler
from forced_exit.sender.tracker import SubmissionTracker


class ReconcilerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.logger = logging.getLogger("test.reconciler")
        self.chain = FakeChain()

    def _reconciler(self, store: InMemoryStore, *, timeout: float = 1.0) -> UnconfirmedRequestReconciler:
        tracker = SubmissionTracker(
            logger=self.logger,
            store=store,
            chain=self.chain,
            submitter=FakeSubmitter(),
            confirm_timeout_seconds=timeout,
            confirm_poll_interval_seconds=0.001,
        )
        return UnconfirmedRequestReconciler(logger=self.logger, store=store, tracker=tracker)

    async def test_failed_receipt_clears_the_submission(self) -> None:
        store = InMemoryStore(make_request(request_id=1, fulfilled_by=("sync-tx:h1",)))
        self.chain.script("sync-tx:h1", "failed")

        summary = await self._reconciler(store).reconcile()

        self.assertEqual(summary.rolled_back, 1)
        self.assertIsNone(store.requests[1].fulfilled_by)
        self.assertIsNone(store.requests[1].fulfilled_at)

    async def test_confirmed_batch_is_marked_fulfilled(self) -> None:
        store = InMemoryStore(make_request(request_id=2, tokens=(0, 1), fulfilled_by=("sync-tx:a", "sync-tx:b")))
        self.chain.script("sync-tx:a", None, "success")
        self.chain.script("sync-tx:b", "success")

        summary = await self._reconciler(store).reconcile()

        self.assertEqual(summary.confirmed, 1)
        self.assertIsNotNone(store.requests[2].fulfilled_at)
        self.assertEqual(store.requests[2].fulfilled_by, ("sync-tx:a", "sync-tx:b"))
        self.assertIn("sync-tx:b", self.chain.lookups)

    async def test_one_failed_hash_in_a_batch_rolls_back(self) -> None:
        store = InMemoryStore(make_request(request_id=3, tokens=(0, 1), fulfilled_by=("sync-tx:a", "sync-tx:b")))
        self.chain.script("sync-tx:a", "success")
        self.chain.script("sync-tx:b", "failed")

        summary = await self._reconciler(store).reconcile()

        self.assertEqual(summary.rolled_back, 1)
        self.assertIsNone(store.requests[3].fulfilled_by)
        self.assertIsNone(store.requests[3].fulfilled_at)

    async def test_timeout_rolls_back(self) -> None:
        store = InMemoryStore(make_request(request_id=4, fulfilled_by=("sync-tx:slow",)))
        self.chain.script("sync-tx:slow", None)

        summary = await self._reconciler(store, timeout=0.02).reconcile()

        self.assertEqual(summary.rolled_back, 1)
        self.assertIsNone(store.requests[4].fulfilled_by)

    async def test_lookup_error_keeps_the_submission(self) -> None:
        store = InMemoryStore(make_request(request_id=5, fulfilled_by=("sync-tx:x",)))
        self.chain.script("sync-tx:x", ConnectionError("api unavailable"))

        summary = await self._reconciler(store).reconcile()

        self.assertEqual(summary.unresolved, 1)
        self.assertEqual(store.requests[5].fulfilled_by, ("sync-tx:x",))
        self.assertIsNone(store.requests[5].fulfilled_at)

    async def test_only_unconfirmed_requests_are_scanned(self) -> None:
        store = InMemoryStore(
            make_request(request_id=6),
            make_request(request_id=7, fulfilled_by=("sync-tx:7",)),
        )

        summary = await self._reconciler(store).reconcile()

        self.assertEqual(summary.scanned, 1)
        self.assertEqual(summary.confirmed, 1)
        self.assertEqual(self.chain.lookups, ["sync-tx:7"])

    async def test_one_request_failing_does_not_stop_the_others(self) -> None:
        store = InMemoryStore(
            make_request(request_id=8, fulfilled_by=("sync-tx:8",)),
            make_request(request_id=9, fulfilled_by=("sync-tx:9",)),
        )
        self.chain.script("sync-tx:8", "failed")
        self.chain.script("sync-tx:9", "success")

        summary = await self._reconciler(store).reconcile()

        self.assertEqual((summary.scanned, summary.confirmed, summary.rolled_back), (2, 1, 1))
        self.assertIsNotNone(store.requests[9].fulfilled_at)

    async def test_nothing_to_reconcile(self) -> None:
        summary = await self._reconciler(InMemoryStore()).reconcile()
        self.assertEqual(summary.scanned, 0)


if __name__ == "__main__":
    unittest.main()
