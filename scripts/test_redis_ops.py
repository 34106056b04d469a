from __future__ import annotations

import logging
import unittest

from fakeredis import aioredis as fake_aioredis
from fakes import make_storage_settings

from forced_exit.storage import StorageGateway

QUEUE_KEY = "forced_exit:payments"
PROCESSING_KEY = "forced_exit:payments:processing"


class PaymentQueueTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.redis = fake_aioredis.FakeRedis(decode_responses=True)
        self.storage = self._gateway()

    async def asyncTearDown(self) -> None:
        await self.redis.aclose()

    def _gateway(self) -> StorageGateway:
        gateway = StorageGateway(make_storage_settings(), logging.getLogger("test.redis"))
        gateway._redis = self.redis
        return gateway

    async def test_popped_event_stays_on_processing_list_until_acked(self) -> None:
        await self.redis.rpush(QUEUE_KEY, "e1", "e2")

        raw = await self.storage.pop_payment_event(timeout_seconds=0.1)

        self.assertEqual(raw, "e1")
        self.assertEqual(await self.redis.lrange(PROCESSING_KEY, 0, -1), ["e1"])

        await self.storage.ack_payment_event(raw)

        self.assertEqual(await self.redis.lrange(PROCESSING_KEY, 0, -1), [])
        self.assertEqual(await self.redis.lrange(QUEUE_KEY, 0, -1), ["e2"])

    async def test_events_in_flight_at_a_crash_are_restored_in_order(self) -> None:
        await self.redis.rpush(QUEUE_KEY, "e1", "e2", "e3")
        await self.storage.pop_payment_event(timeout_seconds=0.1)
        await self.storage.pop_payment_event(timeout_seconds=0.1)

        restarted = self._gateway()
        restored = await restarted.restore_unacked_payment_events()

        self.assertEqual(restored, 2)
        self.assertEqual(await self.redis.lrange(QUEUE_KEY, 0, -1), ["e1", "e2", "e3"])
        self.assertEqual(await self.redis.lrange(PROCESSING_KEY, 0, -1), [])

    async def test_empty_queue_pops_nothing(self) -> None:
        self.assertIsNone(await self.storage.pop_payment_event(timeout_seconds=0.1))
        self.assertEqual(await self.storage.restore_unacked_payment_events(), 0)

    async def test_request_guard_is_exclusive(self) -> None:
        self.assertTrue(await self.storage.acquire_request_guard(request_id=123, owner="a", ttl_seconds=30))
        self.assertFalse(await self.storage.acquire_request_guard(request_id=123, owner="b", ttl_seconds=30))
        self.assertGreater(await self.redis.ttl("forced_exit:guard:123"), 0)


if __name__ == "__main__":
    unittest.main()
