from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

TX_HASH_PREFIX = "sync-tx:"
MAX_REQUEST_ID = 2**63 - 1
MAX_TIMESTAMP = 2**64 - 1

ProcessOutcome = Literal["fulfilled", "skipped", "in_flight", "abandoned"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def canonical_json(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":")).encode("utf-8")


def make_tx_hash(tx_bytes: bytes) -> str:
    return f"{TX_HASH_PREFIX}{hashlib.sha256(tx_bytes).hexdigest()}"


class ForcedExitError(RuntimeError):
    pass


class ForcedExitConfigError(ForcedExitError):
    pass


class SenderStateUnavailableError(ForcedExitError):
    pass


class TransactionSigningError(ForcedExitError):
    pass


class SubmissionError(ForcedExitError):
    pass


class SubmissionTransportError(SubmissionError):
    pass


class SubmissionRejectedError(SubmissionError):
    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class ConfirmationError(ForcedExitError):
    def __init__(self, message: str, *, tx_hash: str) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class ConfirmationFailedError(ConfirmationError):
    def __init__(self, message: str, *, tx_hash: str, fail_reason: str | None = None) -> None:
        super().__init__(message, tx_hash=tx_hash)
        self.fail_reason = fail_reason


class ConfirmationTimeoutError(ConfirmationError):
    def __init__(self, message: str, *, tx_hash: str, timeout_seconds: float) -> None:
        super().__init__(message, tx_hash=tx_hash)
        self.timeout_seconds = timeout_seconds


class ReceiptLookupError(ConfirmationError):
    pass


class FulfillmentConflictError(ForcedExitError):
    def __init__(self, message: str, *, request_id: int) -> None:
        super().__init__(message)
        self.request_id = request_id


@dataclass(slots=True, frozen=True)
class ForcedExitRequest:
    id: int
    target: str
    tokens: tuple[int, ...]
    price_in_wei: int
    valid_until: datetime
    fulfilled_by: tuple[str, ...] | None = None
    fulfilled_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_document(cls, payload: dict[str, Any]) -> "ForcedExitRequest":
        valid_until = parse_datetime(payload.get("valid_until"))
        if valid_until is None:
            raise ValueError(f"Forced exit request {payload.get('id')!r} has no valid_until.")

        raw_fulfilled_by = payload.get("fulfilled_by")
        fulfilled_by = None
        if raw_fulfilled_by is not None:
            fulfilled_by = tuple(str(item) for item in raw_fulfilled_by)

        return cls(
            id=int(payload["id"]),
            target=str(payload["target"]),
            tokens=tuple(int(token) for token in payload.get("tokens") or ()),
            price_in_wei=int(str(payload["price_in_wei"])),
            valid_until=valid_until,
            fulfilled_by=fulfilled_by,
            fulfilled_at=parse_datetime(payload.get("fulfilled_at")),
            created_at=parse_datetime(payload.get("created_at")),
        )

    def to_document(self) -> dict[str, Any]:
        # Firestore integers are 64-bit
        return {
            "id": self.id,
            "target": self.target,
            "tokens": list(self.tokens),
            "price_in_wei": str(self.price_in_wei),
            "valid_until": self.valid_until,
            "fulfilled_by": list(self.fulfilled_by) if self.fulfilled_by is not None else None,
            "fulfilled_at": self.fulfilled_at,
            "created_at": self.created_at,
        }


@dataclass(slots=True, frozen=True)
class SenderAccountState:
    account_id: int
    nonce: int


@dataclass(slots=True, frozen=True)
class TimeRange:
    valid_from: int = 0
    valid_until: int = MAX_TIMESTAMP


@dataclass(slots=True, frozen=True)
class ForcedExitTx:
    initiator_account_id: int
    target: str
    token: int
    fee: int
    nonce: int
    time_range: TimeRange = TimeRange()

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "ForcedExit",
            "initiatorAccountId": self.initiator_account_id,
            "target": self.target,
            "token": self.token,
            "fee": str(self.fee),
            "nonce": self.nonce,
            "validFrom": self.time_range.valid_from,
            "validUntil": self.time_range.valid_until,
        }

    def to_bytes(self) -> bytes:
        return canonical_json(self.to_payload())


@dataclass(slots=True, frozen=True)
class TxSignature:
    pub_key: str
    signature: str


@dataclass(slots=True, frozen=True)
class SignedExitTransaction:
    tx: ForcedExitTx
    signature: TxSignature
    tx_hash: str

    def to_rpc(self) -> dict[str, Any]:
        payload = self.tx.to_payload()
        payload["signature"] = {
            "pubKey": self.signature.pub_key,
            "signature": self.signature.signature,
        }
        return {"tx": payload, "signature": None}


@dataclass(slots=True, frozen=True)
class TxReceipt:
    tx_hash: str
    executed: bool
    success: bool
    fail_reason: str | None = None
    block: int | None = None


@dataclass(slots=True, frozen=True)
class PaymentEvent:
    amount: int
    submitted_at: datetime

    @classmethod
    def from_json(cls, raw: str | bytes) -> "PaymentEvent":
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("Payment event must be a JSON object.")

        submitted_at = parse_datetime(payload.get("submitted_at"))
        if submitted_at is None:
            raise ValueError("Payment event has no submitted_at.")

        amount = int(str(payload["amount"]).strip())
        if amount < 0:
            raise ValueError("Payment amount must be non-negative.")
        return cls(amount=amount, submitted_at=submitted_at)

    def to_json(self) -> str:
        return json.dumps(
            {"amount": str(self.amount), "submitted_at": self.submitted_at.isoformat()},
            separators=(",", ":"),
        )


@dataclass(slots=True, frozen=True)
class ReconciliationSummary:
    scanned: int
    confirmed: int
    rolled_back: int
    unresolved: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Signer(Protocol):
    @property
    def public_key(self) -> str:
        ...

    def sign(self, message: bytes) -> str:
        ...


class ForcedExitStore(Protocol):
    async def get_request_by_id(self, request_id: int) -> ForcedExitRequest | None:
        ...

    async def get_unconfirmed_requests(self) -> list[ForcedExitRequest]:
        ...

    async def set_fulfilled_by(
        self,
        request_id: int,
        hashes: list[str] | None,
        *,
        expected: list[str] | None = None,
    ) -> bool:
        ...

    async def set_fulfilled_at(self, request_id: int, fulfilled_at: datetime) -> bool:
        ...

    async def acquire_request_guard(self, *, request_id: int, owner: str, ttl_seconds: int) -> bool:
        ...

    async def release_request_guard(self, *, request_id: int, owner: str) -> bool:
        ...


class ChainStateReader(Protocol):
    async def account_id_by_address(self, address: str) -> int | None:
        ...

    async def last_committed_state_for_account(self, account_id: int) -> SenderAccountState | None:
        ...

    async def tx_receipt(self, tx_hash: str) -> TxReceipt | None:
        ...


class BatchSubmitter(Protocol):
    async def send_batch(self, txs: list[SignedExitTransaction]) -> list[str]:
        ...
