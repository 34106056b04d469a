from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from solders.keypair import Keypair

from forced_exit.sender.context import KeypairSigner, SenderContext
from forced_exit.sender.types import (
    ForcedExitRequest,
    SenderAccountState,
    SignedExitTransaction,
    SubmissionTransportError,
    TxReceipt,
)
from forced_exit.storage import StorageSettings

TARGET = "0x2d5ef8a0c7f3c3d24bd0b39d4aa3a2f1c0d4e5f6"
SENDER_ADDRESS = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"


def make_context(*, account_id: int = 42, digits_in_id: int = 3) -> SenderContext:
    return SenderContext(
        account_id=account_id,
        address=SENDER_ADDRESS,
        signer=KeypairSigner(Keypair.from_seed(bytes(range(32)))),
        digits_in_id=digits_in_id,
    )


def make_request(
    *,
    request_id: int = 123,
    tokens: tuple[int, ...] = (0,),
    price_in_wei: int = 500_000,
    valid_for: timedelta = timedelta(hours=1),
    fulfilled_by: tuple[str, ...] | None = None,
    fulfilled_at: datetime | None = None,
) -> ForcedExitRequest:
    return ForcedExitRequest(
        id=request_id,
        target=TARGET,
        tokens=tokens,
        price_in_wei=price_in_wei,
        valid_until=datetime.now(timezone.utc) + valid_for,
        fulfilled_by=fulfilled_by,
        fulfilled_at=fulfilled_at,
    )


class InMemoryStore:
    def __init__(self, *requests: ForcedExitRequest) -> None:
        self.requests: dict[int, ForcedExitRequest] = {request.id: request for request in requests}
        self.guards: dict[int, str] = {}
        self.fulfilled_by_writes: list[tuple[int, list[str] | None]] = []
        self.events: list[dict[str, Any]] = []

    async def get_request_by_id(self, request_id: int) -> ForcedExitRequest | None:
        return self.requests.get(request_id)

    async def get_unconfirmed_requests(self) -> list[ForcedExitRequest]:
        return [
            request
            for request in sorted(self.requests.values(), key=lambda item: item.id)
            if request.fulfilled_by is not None and request.fulfilled_at is None
        ]

    async def set_fulfilled_by(
        self,
        request_id: int,
        hashes: list[str] | None,
        *,
        expected: list[str] | None = None,
    ) -> bool:
        request = self.requests.get(request_id)
        if request is None or request.fulfilled_at is not None:
            return False
        current = list(request.fulfilled_by) if request.fulfilled_by is not None else None
        if current != expected:
            return False
        self.requests[request_id] = replace(
            request,
            fulfilled_by=tuple(hashes) if hashes is not None else None,
        )
        self.fulfilled_by_writes.append((request_id, hashes))
        return True

    async def set_fulfilled_at(self, request_id: int, fulfilled_at: datetime) -> bool:
        request = self.requests.get(request_id)
        if request is None or request.fulfilled_at is not None or request.fulfilled_by is None:
            return False
        self.requests[request_id] = replace(request, fulfilled_at=fulfilled_at)
        return True

    async def acquire_request_guard(self, *, request_id: int, owner: str, ttl_seconds: int) -> bool:
        if request_id in self.guards:
            return False
        self.guards[request_id] = owner
        return True

    async def release_request_guard(self, *, request_id: int, owner: str) -> bool:
        if self.guards.get(request_id) != owner:
            return False
        del self.guards[request_id]
        return True

    async def publish_event(
        self,
        *,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
        event_id: str | None = None,
    ) -> None:
        self.events.append({"level": level, "event": event, "message": message, "details": details})


class FakeChain:
    """Receipts are scripted per hash; each lookup consumes one entry, the last one repeats."""

    def __init__(self, *, nonce: int = 7, account_id: int = 42) -> None:
        self.state: SenderAccountState | None = SenderAccountState(account_id=account_id, nonce=nonce)
        self.account_ids: dict[str, int] = {SENDER_ADDRESS: account_id}
        self.receipts: dict[str, list[Any]] = {}
        self.default_receipt: Any = "success"
        self.lookups: list[str] = []

    def script(self, tx_hash: str, *outcomes: Any) -> None:
        self.receipts[tx_hash] = list(outcomes)

    async def account_id_by_address(self, address: str) -> int | None:
        return self.account_ids.get(address)

    async def last_committed_state_for_account(self, account_id: int) -> SenderAccountState | None:
        return self.state

    async def tx_receipt(self, tx_hash: str) -> TxReceipt | None:
        self.lookups.append(tx_hash)
        scripted = self.receipts.get(tx_hash)
        if scripted:
            outcome = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        else:
            outcome = self.default_receipt

        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return None
        if outcome == "success":
            return TxReceipt(tx_hash=tx_hash, executed=True, success=True, block=1)
        if outcome == "failed":
            return TxReceipt(tx_hash=tx_hash, executed=True, success=False, fail_reason="Nonce mismatch")
        raise AssertionError(f"unknown scripted receipt {outcome!r}")


class FakeSubmitter:
    def __init__(self, *failures: Exception) -> None:
        self.failures = list(failures)
        self.batches: list[list[SignedExitTransaction]] = []
        self.returned_hashes: list[str] | None = None

    async def send_batch(self, txs: list[SignedExitTransaction]) -> list[str]:
        if self.failures:
            raise self.failures.pop(0)
        self.batches.append(list(txs))
        if self.returned_hashes is not None:
            return list(self.returned_hashes)
        return [tx.tx_hash for tx in txs]


def transport_error() -> SubmissionTransportError:
    return SubmissionTransportError("connection reset by peer")


def make_storage_settings() -> StorageSettings:
    return StorageSettings(
        redis_url="redis://localhost:6379/0",
        firestore_project_id=None,
        requests_collection="forced_exit_requests",
        service_collection="services",
        service_id="forced-exit-sender",
        service_env="test",
        run_id="run-test",
        runs_collection="runs",
        events_collection="events",
        schema_version=1,
        heartbeat_key="forced_exit:heartbeat",
        status_key="forced_exit:status",
        request_guard_prefix="forced_exit:guard",
        payment_queue_key="forced_exit:payments",
        payment_dead_letter_key="forced_exit:payments:dead",
        payment_processing_key="forced_exit:payments:processing",
    )
