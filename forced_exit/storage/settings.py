from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone

from .helpers import to_int


def _sanitize_service_id(value: str, default: str) -> str:
    normalized = (value.strip() or default).replace("/", "-")
    return normalized or default


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    firestore_project_id: str | None
    requests_collection: str
    service_collection: str
    service_id: str
    service_env: str
    run_id: str
    runs_collection: str
    events_collection: str
    schema_version: int
    heartbeat_key: str
    status_key: str
    request_guard_prefix: str
    payment_queue_key: str
    payment_dead_letter_key: str
    payment_processing_key: str

    @classmethod
    def from_env(cls) -> "StorageSettings":
        service_collection = os.getenv("SERVICE_COLLECTION", "services").strip("/") or "services"
        service_id = _sanitize_service_id(os.getenv("SERVICE_ID", "forced-exit-sender"), "forced-exit-sender")

        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
            requests_collection=(
                os.getenv("FORCED_EXIT_REQUESTS_COLLECTION", "forced_exit_requests").strip("/")
                or "forced_exit_requests"
            ),
            service_collection=service_collection,
            service_id=service_id,
            service_env=os.getenv("SERVICE_ENV", "dev"),
            run_id=os.getenv("SERVICE_RUN_ID")
            or datetime.now(timezone.utc).strftime("run-%Y%m%dT%H%M%SZ"),
            runs_collection=os.getenv("SERVICE_RUNS_COLLECTION", "runs"),
            events_collection=os.getenv("SERVICE_EVENTS_COLLECTION", "events"),
            schema_version=max(1, to_int(os.getenv("SCHEMA_VERSION"), 1)),
            heartbeat_key=os.getenv("REDIS_HEARTBEAT_KEY", "forced_exit:heartbeat"),
            status_key=os.getenv("REDIS_STATUS_KEY", "forced_exit:status"),
            request_guard_prefix=os.getenv("REDIS_REQUEST_GUARD_PREFIX", "forced_exit:guard"),
            payment_queue_key=os.getenv("REDIS_PAYMENT_QUEUE_KEY", "forced_exit:payments"),
            payment_dead_letter_key=os.getenv(
                "REDIS_PAYMENT_DEAD_LETTER_KEY",
                "forced_exit:payments:dead",
            ),
            payment_processing_key=os.getenv(
                "REDIS_PAYMENT_PROCESSING_KEY",
                "forced_exit:payments:processing",
            ),
        )
