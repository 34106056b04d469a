from __future__ import annotations

import json
from typing import Any

from redis.asyncio.client import Redis

from forced_exit.common import log_event

from .helpers import now_iso as _now_iso
from .helpers import serialize_for_redis as _serialize_for_redis

RELEASE_GUARD_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('del', KEYS[1])
end
return 0
"""


class RedisStorageOps:
    @staticmethod
    def _request_guard_key(prefix: str, request_id: int) -> str:
        return f"{prefix}:{request_id}"

    async def acquire_request_guard(self, *, request_id: int, owner: str, ttl_seconds: int) -> bool:
        redis_client = self._require_redis()
        guard_key = self._request_guard_key(self.settings.request_guard_prefix, request_id)
        acquired = await redis_client.set(guard_key, owner, ex=max(1, ttl_seconds), nx=True)
        return bool(acquired)

    async def release_request_guard(self, *, request_id: int, owner: str) -> bool:
        redis_client = self._require_redis()
        guard_key = self._request_guard_key(self.settings.request_guard_prefix, request_id)
        deleted = await redis_client.eval(RELEASE_GUARD_SCRIPT, 1, guard_key, owner)
        return bool(deleted)

    async def pop_payment_event(self, *, timeout_seconds: float) -> str | None:
        """Move the next event onto the processing list; ``ack_payment_event`` removes it."""
        redis_client = self._require_redis()
        return await redis_client.blmove(
            self.settings.payment_queue_key,
            self.settings.payment_processing_key,
            max(0.0, timeout_seconds),
            src="LEFT",
            dest="RIGHT",
        )

    async def ack_payment_event(self, raw: str) -> None:
        redis_client = self._require_redis()
        await redis_client.lrem(self.settings.payment_processing_key, 1, raw)

    async def restore_unacked_payment_events(self) -> int:
        """Put events left on the processing list by an earlier run back at the queue head."""
        redis_client = self._require_redis()
        restored = 0
        while True:
            raw = await redis_client.lmove(
                self.settings.payment_processing_key,
                self.settings.payment_queue_key,
                src="RIGHT",
                dest="LEFT",
            )
            if raw is None:
                break
            restored += 1

        if restored:
            log_event(
                self._logger,
                level="warning",
                event="payment_events_restored",
                message="Requeued payment events that were in flight when the previous run stopped",
                count=restored,
            )
        return restored

    async def requeue_payment_event(self, raw: str) -> None:
        redis_client = self._require_redis()
        await redis_client.lpush(self.settings.payment_queue_key, raw)

    async def dead_letter_payment_event(self, raw: str, *, error: str) -> None:
        redis_client = self._require_redis()
        payload = json.dumps(
            {"raw": raw, "error": error, "failed_at": _now_iso()},
            ensure_ascii=False,
            separators=(",", ":"),
        )
        await redis_client.rpush(self.settings.payment_dead_letter_key, payload)
        log_event(
            self._logger,
            level="warning",
            event="payment_event_dead_lettered",
            message="Unreadable payment event moved to the dead-letter queue",
            error=error,
        )

    async def record_status(self, mapping: dict[str, Any]) -> None:
        redis_client = self._require_redis()
        payload = {key: _serialize_for_redis(value) for key, value in mapping.items()}
        payload["updated_at"] = _now_iso()
        await redis_client.hset(self.settings.status_key, mapping=payload)

    async def update_heartbeat(self) -> None:
        redis_client = self._require_redis()
        await redis_client.set(self.settings.heartbeat_key, _now_iso())

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis
