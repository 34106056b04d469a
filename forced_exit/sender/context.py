from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass

from solders.keypair import Keypair

from forced_exit.common import log_event

from .codec import validate_digits_in_id
from .types import ChainStateReader, ForcedExitConfigError, Signer
from .zksync_client import ZkSyncApiError


class KeypairSigner:
    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    def sign(self, message: bytes) -> str:
        return bytes(self._keypair.sign_message(message)).hex()


def parse_private_key(raw: str) -> Keypair:
    """Accept a ``0x`` hex seed/keypair, a JSON byte array or a base58 keypair."""
    value = raw.strip()
    if not value:
        raise ValueError("FORCED_EXIT_SENDER_PRIVATE_KEY is required.")

    if value.startswith("0x"):
        decoded = bytes.fromhex(value[2:])
        if len(decoded) == 32:
            return Keypair.from_seed(decoded)
        return Keypair.from_bytes(decoded)

    if value.startswith("["):
        arr = json.loads(value)
        if not isinstance(arr, list):
            raise ValueError("FORCED_EXIT_SENDER_PRIVATE_KEY JSON must be an integer array.")
        return Keypair.from_bytes(bytes(arr))

    with contextlib.suppress(Exception):
        return Keypair.from_base58_string(value)

    raise ValueError("Unsupported FORCED_EXIT_SENDER_PRIVATE_KEY format.")


@dataclass(slots=True, frozen=True)
class SenderContext:
    account_id: int
    address: str
    signer: Signer
    digits_in_id: int


async def bootstrap_sender_context(
    *,
    logger: logging.Logger,
    chain: ChainStateReader,
    sender_address: str,
    sender_private_key: str,
    digits_in_id: int,
) -> SenderContext:
    """Resolve the sender account and key once; any failure is fatal."""
    validate_digits_in_id(digits_in_id)

    address = sender_address.strip().lower()
    if not address:
        raise ForcedExitConfigError("FORCED_EXIT_SENDER_ADDRESS is required.")

    try:
        signer = KeypairSigner(parse_private_key(sender_private_key))
    except Exception as error:
        raise ForcedExitConfigError(f"Decoding the sender private key failed: {error}") from error

    try:
        account_id = await chain.account_id_by_address(address)
    except ZkSyncApiError as error:
        # the API answers an unknown address with an application error
        raise ForcedExitConfigError(
            f"Forced exit sender account {address} could not be resolved: {error}"
        ) from error
    if account_id is None:
        raise ForcedExitConfigError(f"Forced exit sender account {address} was not found on chain.")

    log_event(
        logger,
        level="info",
        event="sender_bootstrapped",
        message="Forced exit sender account resolved",
        account_id=account_id,
        address=address,
        public_key=signer.public_key,
        digits_in_id=digits_in_id,
    )
    return SenderContext(
        account_id=account_id,
        address=address,
        signer=signer,
        digits_in_id=digits_in_id,
    )
