from __future__ import annotations

import asyncio
import logging
import unittest
from unittest.mock import AsyncMock, MagicMock

from fakes import SENDER_ADDRESS, FakeChain
from solders.keypair import Keypair

from forced_exit.runtime.loop import bootstrap_dependencies
from forced_exit.runtime.settings import AppSettings
from forced_exit.sender.context import bootstrap_sender_context
from forced_exit.sender.types import ForcedExitConfigError
from forced_exit.sender.zksync_client import ZkSyncApiError

SEED_HEX = "0x" + bytes(range(32)).hex()


def make_settings(**overrides) -> AppSettings:
    values = dict(
        zksync_api_url="https://api.example.test/api/v0.2",
        rpc_timeout_seconds=10.0,
        sender_address=SENDER_ADDRESS,
        sender_private_key=SEED_HEX,
        digits_in_id=3,
        confirm_timeout_seconds=120.0,
        confirm_poll_interval_seconds=0.2,
        escalation_attempts=3,
        retry_backoff_seconds=0.5,
        retry_backoff_max_seconds=30.0,
        request_guard_ttl_seconds=180,
        reconcile_interval_seconds=300.0,
        intake_poll_timeout_seconds=1.0,
        error_backoff_seconds=0.2,
        log_level="INFO",
    )
    values.update(overrides)
    return AppSettings(**values)


class SenderContextTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.logger = logging.getLogger("test.bootstrap")
        self.chain = FakeChain(account_id=42)

    async def _bootstrap(self, **overrides):
        kwargs = dict(
            logger=self.logger,
            chain=self.chain,
            sender_address=SENDER_ADDRESS,
            sender_private_key=SEED_HEX,
            digits_in_id=3,
        )
        kwargs.update(overrides)
        return await bootstrap_sender_context(**kwargs)

    async def test_resolves_account_and_signer(self) -> None:
        context = await self._bootstrap(sender_address=SENDER_ADDRESS.upper().replace("0X", "0x"))

        self.assertEqual(context.account_id, 42)
        self.assertEqual(context.address, SENDER_ADDRESS)
        self.assertEqual(context.signer.public_key, str(Keypair.from_seed(bytes(range(32))).pubkey()))

    async def test_unknown_account_is_fatal(self) -> None:
        self.chain.account_ids = {}
        with self.assertRaises(ForcedExitConfigError):
            await self._bootstrap()

    async def test_undecodable_key_is_fatal(self) -> None:
        for key in ("", "0xnothex", "[1, 2, 3]", "definitely-not-base58!"):
            with self.subTest(key=key):
                with self.assertRaises(ForcedExitConfigError):
                    await self._bootstrap(sender_private_key=key)

    async def test_missing_address_is_fatal(self) -> None:
        with self.assertRaises(ForcedExitConfigError):
            await self._bootstrap(sender_address="  ")

    async def test_oversized_id_space_is_fatal(self) -> None:
        with self.assertRaises(ForcedExitConfigError):
            await self._bootstrap(digits_in_id=19)


class BootstrapDependenciesTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.logger = logging.getLogger("test.bootstrap")
        self.storage = MagicMock()
        self.storage.connect = AsyncMock()
        self.storage.healthcheck = AsyncMock()
        self.storage.close = AsyncMock()
        self.storage.publish_event = AsyncMock()

    def _zksync(self) -> MagicMock:
        chain = FakeChain(account_id=42)
        zksync = MagicMock()
        zksync.connect = AsyncMock()
        zksync.healthcheck = AsyncMock()
        zksync.close = AsyncMock()
        zksync.account_id_by_address = chain.account_id_by_address
        return zksync

    async def test_connection_failures_are_retried(self) -> None:
        zksync = self._zksync()
        zksync.connect.side_effect = [ConnectionError("dns"), None]

        context = await bootstrap_dependencies(
            logger=self.logger,
            stop_event=asyncio.Event(),
            app_settings=make_settings(error_backoff_seconds=0.0),
            storage=self.storage,
            zksync=zksync,
        )

        self.assertEqual(context.account_id, 42)
        self.assertEqual(zksync.connect.await_count, 2)
        zksync.close.assert_awaited_once()
        self.storage.close.assert_awaited_once()

    async def test_configuration_errors_are_not_retried(self) -> None:
        zksync = self._zksync()

        with self.assertRaises(ForcedExitConfigError):
            await bootstrap_dependencies(
                logger=self.logger,
                stop_event=asyncio.Event(),
                app_settings=make_settings(sender_private_key="garbage!"),
                storage=self.storage,
                zksync=zksync,
            )

        zksync.connect.assert_awaited_once()
        self.storage.publish_event.assert_awaited_once()

    async def test_unknown_sender_account_is_not_retried(self) -> None:
        zksync = self._zksync()
        zksync.account_id_by_address = AsyncMock(side_effect=ZkSyncApiError("Account not found", code=104))

        with self.assertRaises(ForcedExitConfigError):
            await asyncio.wait_for(
                bootstrap_dependencies(
                    logger=self.logger,
                    stop_event=asyncio.Event(),
                    app_settings=make_settings(error_backoff_seconds=0.0),
                    storage=self.storage,
                    zksync=zksync,
                ),
                timeout=1.0,
            )

        zksync.account_id_by_address.assert_awaited_once()
        zksync.close.assert_not_awaited()

    async def test_shutdown_before_bootstrap(self) -> None:
        stop_event = asyncio.Event()
        stop_event.set()

        with self.assertRaises(RuntimeError):
            await bootstrap_dependencies(
                logger=self.logger,
                stop_event=stop_event,
                app_settings=make_settings(),
                storage=self.storage,
                zksync=self._zksync(),
            )


if __name__ == "__main__":
    unittest.main()
