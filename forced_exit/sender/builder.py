from __future__ import annotations

import logging

from forced_exit.common import log_event

from .context import SenderContext
from .types import (
    ForcedExitRequest,
    ForcedExitTx,
    SenderAccountState,
    SignedExitTransaction,
    TimeRange,
    TransactionSigningError,
    TxSignature,
    make_tx_hash,
)


class ForcedExitTransactionBuilder:
    def __init__(self, *, logger: logging.Logger, context: SenderContext) -> None:
        self._logger = logger
        self._context = context

    def build_forced_exit(self, *, nonce: int, target: str, token: int) -> SignedExitTransaction:
        tx = ForcedExitTx(
            initiator_account_id=self._context.account_id,
            target=target,
            token=token,
            fee=0,
            nonce=nonce,
            time_range=TimeRange(),
        )
        tx_bytes = tx.to_bytes()
        try:
            signature = self._context.signer.sign(tx_bytes)
        except Exception as error:
            raise TransactionSigningError(
                f"Failed to sign ForcedExit transaction (nonce={nonce}, token={token}): {error}"
            ) from error

        return SignedExitTransaction(
            tx=tx,
            signature=TxSignature(pub_key=self._context.signer.public_key, signature=signature),
            tx_hash=make_tx_hash(tx_bytes),
        )

    def build(
        self,
        request: ForcedExitRequest,
        sender_state: SenderAccountState,
    ) -> list[SignedExitTransaction]:
        """One transaction per token, nonces contiguous from the committed nonce."""
        transactions = [
            self.build_forced_exit(nonce=sender_state.nonce + index, target=request.target, token=token)
            for index, token in enumerate(request.tokens)
        ]

        log_event(
            self._logger,
            level="debug",
            event="forced_exit_batch_built",
            message="Built forced exit transaction batch",
            request_id=request.id,
            tx_count=len(transactions),
            first_nonce=sender_state.nonce,
        )
        return transactions
