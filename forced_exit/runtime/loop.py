from __future__ import annotations

import asyncio
import logging

from forced_exit.common import guarded_call, log_event, wait_with_stop
from forced_exit.sender import (
    ConfirmationTimeoutError,
    ForcedExitConfigError,
    ForcedExitSender,
    PaymentEvent,
    SenderContext,
    TransactionSigningError,
    UnconfirmedRequestReconciler,
    ZkSyncApiClient,
    bootstrap_sender_context,
)
from forced_exit.storage import StorageGateway

from .settings import AppSettings


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    zksync: ZkSyncApiClient,
) -> SenderContext:
    """Connect storage and the zkSync API, then resolve the sender.

    Connection failures are retried until shutdown; configuration failures
    (unknown sender account, undecodable key) are raised immediately.
    """
    while not stop_event.is_set():
        try:
            await storage.connect()
            await storage.healthcheck()
            await zksync.connect()
            await zksync.healthcheck()
            return await bootstrap_sender_context(
                logger=logger,
                chain=zksync,
                sender_address=app_settings.sender_address,
                sender_private_key=app_settings.sender_private_key,
                digits_in_id=app_settings.digits_in_id,
            )
        except ForcedExitConfigError as error:
            log_event(
                logger,
                level="critical",
                event="sender_config_invalid",
                message="Forced exit sender configuration is invalid",
                error=str(error),
            )
            await guarded_call(
                lambda: storage.publish_event(
                    level="CRITICAL",
                    event="sender_config_invalid",
                    message="Forced exit sender configuration is invalid",
                    details={"error": str(error)},
                ),
                logger=logger,
                event="bootstrap_publish_error_failed",
                message="Failed to publish bootstrap error",
            )
            raise
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed",
                error=str(error),
            )
            await guarded_call(
                zksync.close,
                logger=logger,
                event="bootstrap_zksync_close_failed",
                message="Failed to close zkSync client during bootstrap retry",
            )
            await guarded_call(
                storage.close,
                logger=logger,
                event="bootstrap_storage_close_failed",
                message="Failed to close storage during bootstrap retry",
            )

            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)

    raise RuntimeError("Shutdown requested before dependencies were initialized.")


async def handle_payment_event(
    *,
    logger: logging.Logger,
    storage: StorageGateway,
    sender: ForcedExitSender,
    raw: str,
) -> None:
    """Process one popped event and acknowledge it once its outcome is durable.

    An event is left on the processing list only when storage itself fails;
    ``restore_unacked_payment_events`` requeues it on the next start.
    """
    try:
        event = PaymentEvent.from_json(raw)
    except (KeyError, TypeError, ValueError) as error:
        await storage.dead_letter_payment_event(raw, error=str(error))
        await storage.ack_payment_event(raw)
        return

    try:
        outcome = await sender.process(event.amount, event.submitted_at)
    except TransactionSigningError as error:
        await storage.dead_letter_payment_event(raw, error=str(error))
        await storage.ack_payment_event(raw)
        raise
    except ConfirmationTimeoutError:
        # the submission stays recorded; reconciliation settles it
        await guarded_call(
            lambda: storage.record_status({"last_timeout_payment": raw}),
            logger=logger,
            event="status_record_failed",
            message="Failed to record sender status",
        )
        await storage.ack_payment_event(raw)
        raise

    if outcome == "abandoned":
        await storage.requeue_payment_event(raw)
    await storage.ack_payment_event(raw)

    log_event(
        logger,
        level="info" if outcome != "skipped" else "debug",
        event="payment_event_processed",
        message="Payment event processed",
        amount=str(event.amount),
        submitted_at=event.submitted_at.isoformat(),
        outcome=outcome,
    )


async def run_intake_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    sender: ForcedExitSender,
) -> None:
    await guarded_call(
        storage.restore_unacked_payment_events,
        logger=logger,
        event="payment_event_restore_failed",
        message="Failed to requeue payment events left by the previous run",
        level="error",
    )

    while not stop_event.is_set():
        try:
            raw = await storage.pop_payment_event(timeout_seconds=app_settings.intake_poll_timeout_seconds)
            await guarded_call(
                storage.update_heartbeat,
                logger=logger,
                event="heartbeat_failed",
                message="Failed to update heartbeat",
            )
            if raw is None:
                continue

            await handle_payment_event(logger=logger, storage=storage, sender=sender, raw=raw)
        except asyncio.CancelledError:
            raise
        except (ConfirmationTimeoutError, TransactionSigningError) as error:
            log_event(
                logger,
                level="error",
                event="intake_operator_attention_required",
                message="Payment processing stopped on an operational failure; intake continues",
                error_type=type(error).__name__,
                error=str(error),
            )
            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="intake_loop_error",
                message="Payment intake failed",
                error=str(error),
            )
            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)


async def run_reconcile_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    reconciler: UnconfirmedRequestReconciler,
) -> None:
    while not stop_event.is_set():
        try:
            summary = await reconciler.reconcile()
            await guarded_call(
                lambda: storage.record_status({f"reconcile_{key}": value for key, value in summary.to_dict().items()}),
                logger=logger,
                event="status_record_failed",
                message="Failed to record sender status",
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="reconcile_loop_error",
                message="Reconciliation of unconfirmed requests failed",
                error=str(error),
            )

        await wait_with_stop(stop_event, app_settings.reconcile_interval_seconds)
