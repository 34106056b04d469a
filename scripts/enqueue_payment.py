#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from redis import Redis

from forced_exit.sender.types import PaymentEvent, parse_datetime


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Push an observed payment onto the forced exit intake queue.",
    )
    parser.add_argument("--amount", type=int, required=True, help="Observed payment amount in wei.")
    parser.add_argument(
        "--submitted-at",
        default="",
        help="ISO-8601 observation time. Defaults to now (UTC).",
    )
    parser.add_argument("--redis-url", default=os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    parser.add_argument(
        "--queue-key",
        default=os.getenv("REDIS_PAYMENT_QUEUE_KEY", "forced_exit:payments"),
    )
    return parser.parse_args()


def main() -> None:
    load_dotenv(Path(__file__).resolve().parents[1] / ".env")
    args = parse_args()

    submitted_at = parse_datetime(args.submitted_at) or datetime.now(timezone.utc)
    event = PaymentEvent(amount=args.amount, submitted_at=submitted_at)

    client = Redis.from_url(args.redis_url, decode_responses=True)
    try:
        length = client.rpush(args.queue_key, event.to_json())
    finally:
        client.close()

    print(f"[ok] queued {event.to_json()} on {args.queue_key} (length={length})")


if __name__ == "__main__":
    main()
