from __future__ import annotations

import json
import logging
import unittest

from fakes import TARGET, make_context, make_request
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from forced_exit.sender.builder import ForcedExitTransactionBuilder
from forced_exit.sender.context import SenderContext, parse_private_key
from forced_exit.sender.types import (
    MAX_TIMESTAMP,
    SenderAccountState,
    TransactionSigningError,
)


class BrokenSigner:
    public_key = "broken"

    def sign(self, message: bytes) -> str:
        raise RuntimeError("key material is corrupted")


class TransactionBuilderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.context = make_context(account_id=42)
        self.builder = ForcedExitTransactionBuilder(
            logger=logging.getLogger("test.builder"),
            context=self.context,
        )

    def test_two_tokens_get_consecutive_nonces(self) -> None:
        request = make_request(tokens=(0, 5))
        txs = self.builder.build(request, SenderAccountState(account_id=42, nonce=7))

        self.assertEqual([tx.tx.nonce for tx in txs], [7, 8])

    def test_one_transaction_per_token_in_request_order(self) -> None:
        request = make_request(tokens=(9, 1, 4, 2))
        txs = self.builder.build(request, SenderAccountState(account_id=42, nonce=100))

        self.assertEqual(len(txs), 4)
        self.assertEqual([tx.tx.token for tx in txs], [9, 1, 4, 2])
        self.assertEqual([tx.tx.nonce for tx in txs], [100, 101, 102, 103])
        for tx in txs:
            self.assertEqual(tx.tx.target, TARGET)
            self.assertEqual(tx.tx.initiator_account_id, 42)
            self.assertEqual(tx.tx.fee, 0)
            self.assertEqual(tx.tx.time_range.valid_from, 0)
            self.assertEqual(tx.tx.time_range.valid_until, MAX_TIMESTAMP)
        self.assertEqual(len({tx.tx_hash for tx in txs}), 4)

    def test_request_without_tokens_builds_nothing(self) -> None:
        txs = self.builder.build(make_request(tokens=()), SenderAccountState(account_id=42, nonce=3))
        self.assertEqual(txs, [])

    def test_build_is_deterministic(self) -> None:
        request = make_request(tokens=(0, 1))
        state = SenderAccountState(account_id=42, nonce=7)

        first = self.builder.build(request, state)
        second = self.builder.build(request, state)

        self.assertEqual([tx.tx_hash for tx in first], [tx.tx_hash for tx in second])
        self.assertTrue(all(tx.tx_hash.startswith("sync-tx:") for tx in first))

    def test_signature_verifies_against_the_sender_key(self) -> None:
        tx = self.builder.build(make_request(), SenderAccountState(account_id=42, nonce=0))[0]

        signature = Signature.from_bytes(bytes.fromhex(tx.signature.signature))
        pubkey = Pubkey.from_string(tx.signature.pub_key)
        self.assertTrue(signature.verify(pubkey, tx.tx.to_bytes()))

    def test_rpc_payload_has_no_eth_signature(self) -> None:
        tx = self.builder.build(make_request(tokens=(3,)), SenderAccountState(account_id=42, nonce=11))[0]
        payload = tx.to_rpc()

        self.assertIsNone(payload["signature"])
        self.assertEqual(payload["tx"]["type"], "ForcedExit")
        self.assertEqual(payload["tx"]["fee"], "0")
        self.assertEqual(payload["tx"]["nonce"], 11)
        self.assertEqual(payload["tx"]["signature"]["pubKey"], tx.signature.pub_key)
        json.dumps(payload)

    def test_signing_failure_aborts_the_batch(self) -> None:
        context = SenderContext(account_id=42, address="0x00", signer=BrokenSigner(), digits_in_id=3)
        builder = ForcedExitTransactionBuilder(logger=logging.getLogger("test.builder"), context=context)

        with self.assertRaises(TransactionSigningError):
            builder.build(make_request(tokens=(0, 1)), SenderAccountState(account_id=42, nonce=7))


class ParsePrivateKeyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.seed = bytes(range(32))
        self.keypair = Keypair.from_seed(self.seed)

    def test_hex_seed_with_prefix(self) -> None:
        parsed = parse_private_key("0x" + self.seed.hex())
        self.assertEqual(parsed.pubkey(), self.keypair.pubkey())

    def test_json_byte_array(self) -> None:
        parsed = parse_private_key(json.dumps(list(bytes(self.keypair))))
        self.assertEqual(parsed.pubkey(), self.keypair.pubkey())

    def test_base58_keypair(self) -> None:
        parsed = parse_private_key(str(self.keypair))
        self.assertEqual(parsed.pubkey(), self.keypair.pubkey())

    def test_garbage_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_private_key("not-a-key")

    def test_empty_key_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_private_key("   ")


if __name__ == "__main__":
    unittest.main()
