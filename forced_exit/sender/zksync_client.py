from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from forced_exit.common import log_event

from .types import (
    SenderAccountState,
    SignedExitTransaction,
    SubmissionRejectedError,
    SubmissionTransportError,
    TxReceipt,
)

EXECUTED_TX_STATUSES = {"committed", "finalized"}
REJECTED_TX_STATUS = "rejected"


class ZkSyncTransportError(RuntimeError):
    pass


class ZkSyncApiError(RuntimeError):
    def __init__(self, message: str, *, code: int | None = None, error_type: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.error_type = error_type


def _error_from_payload(payload: Any) -> ZkSyncApiError:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            return ZkSyncApiError(
                str(error.get("message") or error),
                code=int(code) if isinstance(code, int) else None,
                error_type=str(error.get("errorType") or "") or None,
            )
        if error:
            return ZkSyncApiError(str(error))
    return ZkSyncApiError(f"Unexpected zkSync API response: {str(payload)[:240]!r}")


class ZkSyncApiClient:
    """Client for the zkSync REST API (v0.2).

    Doubles as the chain-state reader (account lookup, committed nonce,
    transaction receipts) and the batch submitter.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        api_url: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._logger = logger
        self._api_url = api_url.strip().rstrip("/")
        self._timeout_seconds = max(1.0, float(timeout_seconds))
        self._http_session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if not self._api_url:
            raise ValueError("ZKSYNC_API_URL is required.")
        if self._http_session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._http_session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def healthcheck(self) -> None:
        await self._request("GET", "/networkStatus")

    async def account_id_by_address(self, address: str) -> int | None:
        result = await self._request("GET", f"/accounts/{address}/committed")
        if not isinstance(result, dict):
            return None
        account_id = result.get("accountId")
        return int(account_id) if account_id is not None else None

    async def last_committed_state_for_account(self, account_id: int) -> SenderAccountState | None:
        result = await self._request("GET", f"/accounts/{account_id}/committed")
        if not isinstance(result, dict):
            return None
        return SenderAccountState(
            account_id=int(result.get("accountId", account_id)),
            nonce=int(result.get("nonce", 0)),
        )

    async def tx_receipt(self, tx_hash: str) -> TxReceipt | None:
        result = await self._request("GET", f"/transactions/{tx_hash}")
        if not isinstance(result, dict):
            return None

        status = str(result.get("status") or "").strip().lower()
        if status in EXECUTED_TX_STATUSES:
            return TxReceipt(
                tx_hash=tx_hash,
                executed=True,
                success=True,
                block=result.get("blockNumber"),
            )
        if status == REJECTED_TX_STATUS:
            return TxReceipt(
                tx_hash=tx_hash,
                executed=True,
                success=False,
                fail_reason=result.get("failReason"),
                block=result.get("blockNumber"),
            )
        return None

    async def send_batch(self, txs: list[SignedExitTransaction]) -> list[str]:
        """Submit ``txs`` as one batch and return the hashes zkSync tracks them under."""
        payload = {
            "txs": [tx.to_rpc() for tx in txs],
            "signature": None,
        }
        try:
            result = await self._request("POST", "/transactions/batches", payload=payload)
        except ZkSyncTransportError as error:
            raise SubmissionTransportError(f"Forced exit batch submission failed: {error}") from error
        except ZkSyncApiError as error:
            raise SubmissionRejectedError(
                f"Forced exit batch was rejected: {error}",
                code=error.code,
            ) from error

        local_hashes = [tx.tx_hash for tx in txs]
        returned = result.get("transactionHashes") if isinstance(result, dict) else None
        hashes = [str(item) for item in returned] if isinstance(returned, list) and returned else local_hashes
        if hashes != local_hashes:
            log_event(
                self._logger,
                level="warning",
                event="zksync_batch_hash_mismatch",
                message="zkSync returned different hashes for the forced exit batch; tracking the returned ones",
                local_hashes=local_hashes,
                returned_hashes=hashes,
            )

        log_event(
            self._logger,
            level="info",
            event="zksync_batch_submitted",
            message="Forced exit batch accepted by zkSync",
            tx_count=len(txs),
            batch_hash=result.get("batchHash") if isinstance(result, dict) else None,
        )
        return hashes

    async def _request(self, method: str, path: str, *, payload: dict[str, Any] | None = None) -> Any:
        if self._http_session is None:
            await self.connect()
        if self._http_session is None:
            raise ZkSyncTransportError("HTTP session is not initialized.")

        url = f"{self._api_url}{path}"
        try:
            async with self._http_session.request(method, url, json=payload) as response:
                status = response.status
                raw_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise ZkSyncTransportError(f"{method} {path} failed: {error!r}") from error

        if status >= 500:
            raise ZkSyncTransportError(f"{method} {path} failed: status={status} body={raw_text[:240]!r}")

        try:
            parsed = json.loads(raw_text) if raw_text else {}
        except json.JSONDecodeError as error:
            raise ZkSyncTransportError(
                f"{method} {path} returned non-JSON body: status={status} body={raw_text[:240]!r}"
            ) from error

        if status >= 400 or not isinstance(parsed, dict) or parsed.get("status") != "success":
            raise _error_from_payload(parsed)

        return parsed.get("result")
