from __future__ import annotations

import logging

from forced_exit.common import guarded_call, log_event

from .tracker import SubmissionTracker
from .types import (
    ConfirmationFailedError,
    ConfirmationTimeoutError,
    ForcedExitRequest,
    ForcedExitStore,
    ReceiptLookupError,
    ReconciliationSummary,
)


class UnconfirmedRequestReconciler:
    """Resolves requests whose submission was recorded but never confirmed."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: ForcedExitStore,
        tracker: SubmissionTracker,
    ) -> None:
        self._logger = logger
        self._store = store
        self._tracker = tracker

    async def reconcile(self) -> ReconciliationSummary:
        requests = await self._store.get_unconfirmed_requests()
        if not requests:
            return ReconciliationSummary(scanned=0, confirmed=0, rolled_back=0, unresolved=0)

        confirmed = 0
        rolled_back = 0
        unresolved = 0

        for request in requests:
            status = await guarded_call(
                lambda: self._reconcile_request(request),
                logger=self._logger,
                event="reconcile_request_failed",
                message="Unexpected error while reconciling a forced exit request",
                level="error",
                default="unresolved",
                request_id=request.id,
            )
            if status == "confirmed":
                confirmed += 1
            elif status == "rolled_back":
                rolled_back += 1
            else:
                unresolved += 1

        summary = ReconciliationSummary(
            scanned=len(requests),
            confirmed=confirmed,
            rolled_back=rolled_back,
            unresolved=unresolved,
        )
        log_event(
            self._logger,
            level="info",
            event="reconcile_completed",
            message="Reconciled unconfirmed forced exit requests",
            **summary.to_dict(),
        )
        return summary

    async def _reconcile_request(self, request: ForcedExitRequest) -> str:
        hashes = list(request.fulfilled_by or ())
        if not hashes:
            return "unresolved"

        try:
            for tx_hash in hashes:
                await self._tracker.await_confirmation(tx_hash)
        except ReceiptLookupError as error:
            # Lookup failures say nothing about the transaction itself.
            log_event(
                self._logger,
                level="warning",
                event="reconcile_receipt_lookup_failed",
                message="Receipt lookup failed; keeping the recorded submission",
                request_id=request.id,
                tx_hash=error.tx_hash,
                error=str(error),
            )
            return "unresolved"
        except (ConfirmationFailedError, ConfirmationTimeoutError) as error:
            log_event(
                self._logger,
                level="error",
                event="reconcile_submission_failed",
                message="A previously sent forced exit transaction has failed; cancelling it",
                request_id=request.id,
                tx_hash=error.tx_hash,
                error=str(error),
            )
            await self._tracker.release(request.id, hashes)
            return "rolled_back"

        await self._tracker.mark_fulfilled(request.id)
        return "confirmed"
