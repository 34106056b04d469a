from __future__ import annotations

import asyncio
import contextlib
import signal

from dotenv import load_dotenv

from forced_exit.common import guarded_call
from forced_exit.runtime import (
    AppSettings,
    bootstrap_dependencies,
    run_intake_loop,
    run_reconcile_loop,
    setup_logger,
)
from forced_exit.sender import (
    ForcedExitSender,
    ForcedExitTransactionBuilder,
    SubmissionTracker,
    UnconfirmedRequestReconciler,
    ZkSyncApiClient,
)
from forced_exit.storage import StorageGateway, StorageSettings


async def main() -> None:
    load_dotenv()

    app_settings = AppSettings.from_env()
    storage_settings = StorageSettings.from_env()
    logger = setup_logger(app_settings.log_level)

    storage = StorageGateway(storage_settings, logger)
    zksync = ZkSyncApiClient(
        logger=logger,
        api_url=app_settings.zksync_api_url,
        timeout_seconds=app_settings.rpc_timeout_seconds,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        logger.info(
            "Shutdown signal received",
            extra={"event": "shutdown_signal_received", "signal": sig.name},
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    context = await bootstrap_dependencies(
        logger=logger,
        stop_event=stop_event,
        app_settings=app_settings,
        storage=storage,
        zksync=zksync,
    )

    tracker = SubmissionTracker(
        logger=logger,
        store=storage,
        chain=zksync,
        submitter=zksync,
        confirm_timeout_seconds=app_settings.confirm_timeout_seconds,
        confirm_poll_interval_seconds=app_settings.confirm_poll_interval_seconds,
    )
    sender = ForcedExitSender(
        logger=logger,
        context=context,
        store=storage,
        chain=zksync,
        builder=ForcedExitTransactionBuilder(logger=logger, context=context),
        tracker=tracker,
        events=storage,
        escalation_attempts=app_settings.escalation_attempts,
        retry_backoff_seconds=app_settings.retry_backoff_seconds,
        retry_backoff_max_seconds=app_settings.retry_backoff_max_seconds,
        request_guard_ttl_seconds=app_settings.request_guard_ttl_seconds,
        stop_event=stop_event,
    )
    reconciler = UnconfirmedRequestReconciler(logger=logger, store=storage, tracker=tracker)

    await storage.publish_event(
        level="INFO",
        event="sender_started",
        message="Forced exit sender started",
        details={
            "account_id": context.account_id,
            "address": context.address,
            "digits_in_id": context.digits_in_id,
        },
    )

    try:
        await asyncio.gather(
            run_reconcile_loop(
                logger=logger,
                stop_event=stop_event,
                app_settings=app_settings,
                storage=storage,
                reconciler=reconciler,
            ),
            run_intake_loop(
                logger=logger,
                stop_event=stop_event,
                app_settings=app_settings,
                storage=storage,
                sender=sender,
            ),
        )
    finally:
        await guarded_call(
            lambda: storage.publish_event(
                level="INFO",
                event="sender_stopped",
                message="Forced exit sender stopped gracefully",
            ),
            logger=logger,
            event="shutdown_publish_failed",
            message="Failed to publish shutdown event",
        )
        await storage.mark_run_stopped(reason="shutdown")

        with contextlib.suppress(Exception):
            await zksync.close()
        with contextlib.suppress(Exception):
            await storage.close()

        logger.info("Shutdown completed", extra={"event": "shutdown_completed"})


if __name__ == "__main__":
    asyncio.run(main())
