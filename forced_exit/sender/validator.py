from __future__ import annotations

from datetime import datetime

from .types import ForcedExitRequest, ensure_utc


def should_fulfill(
    decoded_amount: int,
    submission_time: datetime,
    request: ForcedExitRequest | None,
) -> bool:
    # Unrelated payments, replays and stale requests are routine; never raise here.
    if request is None:
        return False

    if request.fulfilled_at is not None:
        return False

    if ensure_utc(submission_time) >= ensure_utc(request.valid_until):
        return False

    return decoded_amount == request.price_in_wei
