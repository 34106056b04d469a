from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from fakes import TARGET, make_request

from forced_exit.sender.codec import decode_amount
from forced_exit.sender.types import ForcedExitRequest, PaymentEvent
from forced_exit.sender.validator import should_fulfill


class ShouldFulfillTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime.now(timezone.utc)

    def test_live_request_with_matching_amount_is_fulfilled(self) -> None:
        request_id, amount = decode_amount(500123, 3)
        request = make_request(request_id=request_id, price_in_wei=500000)

        self.assertEqual(request_id, 123)
        self.assertTrue(should_fulfill(amount, self.now, request))

    def test_missing_request_is_ignored(self) -> None:
        self.assertFalse(should_fulfill(500000, self.now, None))

    def test_fulfilled_request_is_ignored_even_if_amount_matches(self) -> None:
        request = make_request(fulfilled_by=("sync-tx:aa",), fulfilled_at=self.now)
        self.assertFalse(should_fulfill(500000, self.now, request))

    def test_expired_request_is_ignored(self) -> None:
        request = make_request(valid_for=timedelta(seconds=-1))
        self.assertFalse(should_fulfill(500000, self.now, request))

    def test_submission_exactly_at_valid_until_is_ignored(self) -> None:
        request = make_request()
        self.assertFalse(should_fulfill(500000, request.valid_until, request))

    def test_amount_mismatch_is_ignored(self) -> None:
        request = make_request(price_in_wei=500000)
        self.assertFalse(should_fulfill(501000, self.now, request))

    def test_naive_submission_time_is_treated_as_utc(self) -> None:
        request = make_request()
        naive_now = datetime.now(timezone.utc).replace(tzinfo=None)
        self.assertTrue(should_fulfill(500000, naive_now, request))


class RequestDocumentTests(unittest.TestCase):
    def test_document_fields_are_parsed(self) -> None:
        request = ForcedExitRequest.from_document(
            {
                "id": 7,
                "target": TARGET,
                "tokens": [3, 0],
                "price_in_wei": "123456789012345678901234567890",
                "valid_until": "2030-01-01T00:00:00Z",
                "fulfilled_by": ["sync-tx:01", "sync-tx:02"],
                "fulfilled_at": None,
            }
        )

        self.assertEqual(request.tokens, (3, 0))
        self.assertEqual(request.price_in_wei, 123456789012345678901234567890)
        self.assertEqual(request.valid_until, datetime(2030, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(request.fulfilled_by, ("sync-tx:01", "sync-tx:02"))
        self.assertIsNone(request.fulfilled_at)

    def test_price_is_stored_as_a_string(self) -> None:
        document = make_request(price_in_wei=2**80).to_document()
        self.assertEqual(document["price_in_wei"], str(2**80))
        self.assertIsNone(document["fulfilled_by"])


class PaymentEventTests(unittest.TestCase):
    def test_event_is_parsed_from_json(self) -> None:
        event = PaymentEvent.from_json('{"amount": "500123", "submitted_at": "2030-01-01T00:00:00+00:00"}')
        self.assertEqual(event.amount, 500123)
        self.assertEqual(event.submitted_at, datetime(2030, 1, 1, tzinfo=timezone.utc))

    def test_negative_amount_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            PaymentEvent.from_json('{"amount": "-5", "submitted_at": "2030-01-01T00:00:00Z"}')

    def test_missing_submission_time_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            PaymentEvent.from_json('{"amount": "5"}')


if __name__ == "__main__":
    unittest.main()
