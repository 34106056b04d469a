from __future__ import annotations

import os
from dataclasses import dataclass

from forced_exit.storage.helpers import to_float, to_int


@dataclass(slots=True)
class AppSettings:
    zksync_api_url: str
    rpc_timeout_seconds: float
    sender_address: str
    sender_private_key: str
    digits_in_id: int
    confirm_timeout_seconds: float
    confirm_poll_interval_seconds: float
    escalation_attempts: int
    retry_backoff_seconds: float
    retry_backoff_max_seconds: float
    request_guard_ttl_seconds: int
    reconcile_interval_seconds: float
    intake_poll_timeout_seconds: float
    error_backoff_seconds: float
    log_level: str

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            zksync_api_url=os.getenv("ZKSYNC_API_URL", "https://api.zksync.io/api/v0.2").strip(),
            rpc_timeout_seconds=max(1.0, to_float(os.getenv("RPC_TIMEOUT_SECONDS"), 10.0)),
            sender_address=os.getenv("FORCED_EXIT_SENDER_ADDRESS", "").strip(),
            sender_private_key=os.getenv("FORCED_EXIT_SENDER_PRIVATE_KEY", ""),
            digits_in_id=to_int(os.getenv("FORCED_EXIT_DIGITS_IN_ID"), 10),
            confirm_timeout_seconds=max(
                1.0,
                to_float(os.getenv("CONFIRM_TIMEOUT_SECONDS"), 120.0),
            ),
            confirm_poll_interval_seconds=max(
                0.05,
                to_float(os.getenv("CONFIRM_POLL_INTERVAL_SECONDS"), 0.2),
            ),
            escalation_attempts=max(1, to_int(os.getenv("ESCALATION_ATTEMPTS"), 3)),
            retry_backoff_seconds=max(0.05, to_float(os.getenv("RETRY_BACKOFF_SECONDS"), 0.5)),
            retry_backoff_max_seconds=max(
                0.0,
                to_float(os.getenv("RETRY_BACKOFF_MAX_SECONDS"), 30.0),
            ),
            request_guard_ttl_seconds=max(
                30,
                to_int(os.getenv("REQUEST_GUARD_TTL_SECONDS"), 180),
            ),
            reconcile_interval_seconds=max(
                1.0,
                to_float(os.getenv("RECONCILE_INTERVAL_SECONDS"), 300.0),
            ),
            intake_poll_timeout_seconds=max(
                0.1,
                to_float(os.getenv("INTAKE_POLL_TIMEOUT_SECONDS"), 1.0),
            ),
            error_backoff_seconds=max(0.2, to_float(os.getenv("ERROR_BACKOFF_SECONDS"), 2.0)),
            log_level=(os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"),
        )
