from __future__ import annotations

import asyncio
import logging

from forced_exit.common import log_event

from .types import (
    BatchSubmitter,
    ChainStateReader,
    ConfirmationFailedError,
    ConfirmationTimeoutError,
    ForcedExitRequest,
    ForcedExitStore,
    FulfillmentConflictError,
    ReceiptLookupError,
    SignedExitTransaction,
    utc_now,
)

DEFAULT_CONFIRM_TIMEOUT_SECONDS = 120.0
DEFAULT_CONFIRM_POLL_INTERVAL_SECONDS = 0.2


class SubmissionTracker:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: ForcedExitStore,
        chain: ChainStateReader,
        submitter: BatchSubmitter,
        confirm_timeout_seconds: float = DEFAULT_CONFIRM_TIMEOUT_SECONDS,
        confirm_poll_interval_seconds: float = DEFAULT_CONFIRM_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._logger = logger
        self._store = store
        self._chain = chain
        self._submitter = submitter
        self._confirm_timeout_seconds = max(0.0, float(confirm_timeout_seconds))
        self._confirm_poll_interval_seconds = max(0.0, float(confirm_poll_interval_seconds))

    @property
    def confirm_timeout_seconds(self) -> float:
        return self._confirm_timeout_seconds

    async def submit(self, request: ForcedExitRequest, txs: list[SignedExitTransaction]) -> list[str]:
        """Send the batch, then record the hashes the submitter reports in ``fulfilled_by``.

        Nothing is persisted when the send fails. A crash after a successful
        send and before the write leaves the request unmarked; resending the
        same nonces is rejected by the network if the batch already applied.
        """
        hashes = await self._submitter.send_batch(txs)

        claimed = await self._store.set_fulfilled_by(request.id, hashes, expected=None)
        if not claimed:
            log_event(
                self._logger,
                level="error",
                event="fulfilled_by_conflict",
                message="Batch was sent but another submission is already recorded for the request",
                request_id=request.id,
                tx_hashes=hashes,
            )
            raise FulfillmentConflictError(
                f"Forced exit request {request.id} already has a recorded submission.",
                request_id=request.id,
            )

        log_event(
            self._logger,
            level="info",
            event="forced_exit_submitted",
            message="Forced exit batch submitted",
            request_id=request.id,
            tx_hashes=hashes,
        )
        return hashes

    async def await_confirmation(self, tx_hash: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._confirm_timeout_seconds

        while True:
            if loop.time() >= deadline:
                raise ConfirmationTimeoutError(
                    f"ForcedExit transaction {tx_hash} was not committed within "
                    f"{self._confirm_timeout_seconds:.1f}s.",
                    tx_hash=tx_hash,
                    timeout_seconds=self._confirm_timeout_seconds,
                )

            try:
                receipt = await self._chain.tx_receipt(tx_hash)
            except asyncio.CancelledError:
                raise
            except Exception as error:
                raise ReceiptLookupError(
                    f"Receipt lookup for {tx_hash} failed: {error}",
                    tx_hash=tx_hash,
                ) from error

            if receipt is not None and receipt.executed:
                if receipt.success:
                    return
                raise ConfirmationFailedError(
                    f"ForcedExit transaction {tx_hash} failed: {receipt.fail_reason or 'unknown reason'}",
                    tx_hash=tx_hash,
                    fail_reason=receipt.fail_reason,
                )

            await asyncio.sleep(self._confirm_poll_interval_seconds)

    async def mark_fulfilled(self, request_id: int) -> bool:
        updated = await self._store.set_fulfilled_at(request_id, utc_now())
        if updated:
            log_event(
                self._logger,
                level="info",
                event="forced_exit_fulfilled",
                message="Forced exit request fulfilled",
                request_id=request_id,
            )
        else:
            log_event(
                self._logger,
                level="warning",
                event="fulfilled_at_already_set",
                message="Forced exit request was already marked as fulfilled",
                request_id=request_id,
            )
        return updated

    async def release(self, request_id: int, hashes: list[str]) -> bool:
        released = await self._store.set_fulfilled_by(request_id, None, expected=hashes)
        log_event(
            self._logger,
            level="warning",
            event="fulfilled_by_released" if released else "fulfilled_by_release_skipped",
            message="Cleared the recorded submission of a forced exit request"
            if released
            else "Recorded submission changed before it could be cleared",
            request_id=request_id,
            tx_hashes=hashes,
        )
        return released
