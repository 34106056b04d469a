from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Protocol

from forced_exit.common import backoff_seconds, guarded_call, log_event, wait_with_stop

from .builder import ForcedExitTransactionBuilder
from .codec import decode_amount
from .context import SenderContext
from .tracker import SubmissionTracker
from .types import (
    ChainStateReader,
    ConfirmationFailedError,
    ConfirmationTimeoutError,
    ForcedExitStore,
    ProcessOutcome,
    SenderStateUnavailableError,
    TransactionSigningError,
)
from .validator import should_fulfill

DEFAULT_ESCALATION_ATTEMPTS = 3
ATTEMPT_COUNTER_CEILING = 1_000_000


class EventPublisher(Protocol):
    async def publish_event(
        self,
        *,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
        event_id: str | None = None,
    ) -> None:
        ...


class ForcedExitSender:
    """Runs decode, validate, build, submit, confirm for one payment until it sticks.

    Recoverable failures restart the whole attempt after a backoff. Retrying
    never gives up on its own; after ``escalation_attempts`` consecutive
    failures each further failure is escalated to error level. Confirmation
    timeouts and signing failures are raised to the caller instead.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        context: SenderContext,
        store: ForcedExitStore,
        chain: ChainStateReader,
        builder: ForcedExitTransactionBuilder,
        tracker: SubmissionTracker,
        events: EventPublisher | None = None,
        escalation_attempts: int = DEFAULT_ESCALATION_ATTEMPTS,
        retry_backoff_seconds: float = 0.5,
        retry_backoff_max_seconds: float = 30.0,
        request_guard_ttl_seconds: int = 180,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._logger = logger
        self._context = context
        self._store = store
        self._chain = chain
        self._builder = builder
        self._tracker = tracker
        self._events = events
        self._escalation_attempts = max(1, int(escalation_attempts))
        self._retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))
        self._retry_backoff_max_seconds = max(self._retry_backoff_seconds, float(retry_backoff_max_seconds))
        # the guard must outlive a full confirmation wait
        self._request_guard_ttl_seconds = max(
            int(request_guard_ttl_seconds),
            int(tracker.confirm_timeout_seconds) + 30,
        )
        self._stop_event = stop_event

    async def process(self, amount: int, submission_time: datetime) -> ProcessOutcome:
        attempts = 0

        while True:
            try:
                return await self.try_process(amount, submission_time)
            except asyncio.CancelledError:
                raise
            except (ConfirmationTimeoutError, TransactionSigningError) as error:
                log_event(
                    self._logger,
                    level="critical",
                    event="forced_exit_processing_halted",
                    message="Forced exit processing requires operator attention",
                    amount=str(amount),
                    error_type=type(error).__name__,
                    error=str(error),
                )
                await self._publish(
                    level="CRITICAL",
                    event="forced_exit_processing_halted",
                    message="Forced exit processing requires operator attention",
                    details={"amount": str(amount), "error_type": type(error).__name__, "error": str(error)},
                )
                raise
            except Exception as error:
                attempts = min(attempts + 1, ATTEMPT_COUNTER_CEILING)
                escalated = attempts >= self._escalation_attempts
                delay_seconds = backoff_seconds(
                    attempt=attempts,
                    base_seconds=self._retry_backoff_seconds,
                    max_seconds=self._retry_backoff_max_seconds,
                )
                log_event(
                    self._logger,
                    level="error" if escalated else "warning",
                    event="forced_exit_attempt_failed",
                    message=f"Failed to process forced exit for the {attempts} time"
                    if escalated
                    else "Forced exit attempt failed; retrying",
                    amount=str(amount),
                    attempt=attempts,
                    error_type=type(error).__name__,
                    error=str(error),
                    backoff_seconds=round(delay_seconds, 3),
                )
                if escalated:
                    await self._publish(
                        level="ERROR",
                        event="forced_exit_attempt_failed",
                        message="Forced exit keeps failing",
                        details={"amount": str(amount), "attempt": attempts, "error": str(error)},
                    )

                if await wait_with_stop(self._stop_event, delay_seconds):
                    log_event(
                        self._logger,
                        level="warning",
                        event="forced_exit_processing_abandoned",
                        message="Shutdown requested while retrying a forced exit",
                        amount=str(amount),
                        attempt=attempts,
                    )
                    return "abandoned"

    async def try_process(self, amount: int, submission_time: datetime) -> ProcessOutcome:
        request_id, true_amount = decode_amount(amount, self._context.digits_in_id)

        request = await self._store.get_request_by_id(request_id)
        if not should_fulfill(true_amount, submission_time, request):
            log_event(
                self._logger,
                level="debug",
                event="forced_exit_request_skipped",
                message="Payment does not match a live forced exit request",
                request_id=request_id,
            )
            return "skipped"
        if request.fulfilled_by is not None:
            return self._in_flight(request_id, reason="submission_recorded")

        owner = uuid.uuid4().hex
        acquired = await self._store.acquire_request_guard(
            request_id=request_id,
            owner=owner,
            ttl_seconds=self._request_guard_ttl_seconds,
        )
        if not acquired:
            return self._in_flight(request_id, reason="guard_held")

        try:
            # re-read under the guard; the first read may be stale
            request = await self._store.get_request_by_id(request_id)
            if not should_fulfill(true_amount, submission_time, request):
                return "skipped"
            if request.fulfilled_by is not None:
                return self._in_flight(request_id, reason="submission_recorded")

            sender_state = await self._chain.last_committed_state_for_account(self._context.account_id)
            if sender_state is None:
                raise SenderStateUnavailableError(
                    f"The forced exit sender account {self._context.account_id} has no committed state."
                )

            txs = self._builder.build(request, sender_state)
            if not txs:
                log_event(
                    self._logger,
                    level="warning",
                    event="forced_exit_request_without_tokens",
                    message="Forced exit request has no tokens to exit",
                    request_id=request_id,
                )
                return "skipped"

            hashes = await self._tracker.submit(request, txs)

            # the batch is one unit; its first transaction stands for all of them
            try:
                await self._tracker.await_confirmation(hashes[0])
            except ConfirmationFailedError:
                await self._tracker.release(request_id, hashes)
                raise

            if await self._tracker.mark_fulfilled(request_id):
                return "fulfilled"

            # the conditional write lost; report what is actually stored
            current = await self._store.get_request_by_id(request_id)
            if current is not None and current.fulfilled_at is not None:
                return "fulfilled"
            return self._in_flight(request_id, reason="fulfilled_at_not_recorded")
        finally:
            await guarded_call(
                lambda: self._store.release_request_guard(request_id=request_id, owner=owner),
                logger=self._logger,
                event="request_guard_release_failed",
                message="Failed to release the forced exit request guard",
                request_id=request_id,
            )

    def _in_flight(self, request_id: int, *, reason: str) -> ProcessOutcome:
        log_event(
            self._logger,
            level="info",
            event="forced_exit_request_in_flight",
            message="Forced exit request already has a submission in flight",
            request_id=request_id,
            reason=reason,
        )
        return "in_flight"

    async def _publish(self, *, level: str, event: str, message: str, details: dict[str, Any]) -> None:
        if self._events is None:
            return
        await guarded_call(
            lambda: self._events.publish_event(level=level, event=event, message=message, details=details),
            logger=self._logger,
            event="forced_exit_event_publish_failed",
            message="Failed to publish forced exit event",
        )
