from __future__ import annotations

from .types import MAX_REQUEST_ID, ForcedExitConfigError


def id_space_size(digits: int) -> int:
    if digits < 0:
        raise ValueError("digits must be non-negative.")
    return 10**digits


def validate_digits_in_id(digits: int) -> int:
    """Reject digit counts whose ids could overflow the request-id range."""
    if digits < 0:
        raise ForcedExitConfigError(f"FORCED_EXIT_DIGITS_IN_ID must be non-negative, got {digits}.")
    if id_space_size(digits) - 1 > MAX_REQUEST_ID:
        raise ForcedExitConfigError(
            f"FORCED_EXIT_DIGITS_IN_ID={digits} produces ids outside the 64-bit request id range."
        )
    return digits


def encode_amount(true_amount: int, request_id: int, digits: int) -> int:
    """Amount a user must pay so that ``decode_amount`` yields ``(request_id, true_amount)``."""
    space = id_space_size(digits)
    if not 0 <= request_id < space:
        raise ValueError(f"request_id {request_id} does not fit in {digits} digits.")
    if true_amount < 0 or true_amount % space != 0:
        raise ValueError(f"true_amount must be non-negative with its last {digits} digits zeroed.")
    return true_amount + request_id


def decode_amount(amount: int, digits: int) -> tuple[int, int]:
    """Split a payment amount into ``(request_id, true_amount)``.

    The request id lives in the last ``digits`` decimal digits of the amount;
    the true amount is what remains once those digits are zeroed, so it can be
    compared against the stored ``price_in_wei`` of the request.

    >>> decode_amount(500123, 3)
    (123, 500000)
    """
    if amount < 0:
        raise ValueError("amount must be non-negative.")

    request_id = amount % id_space_size(digits)
    return request_id, amount - request_id
