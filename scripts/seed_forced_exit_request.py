#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from forced_exit.sender.codec import encode_amount, validate_digits_in_id
from forced_exit.sender.types import ForcedExitRequest
from forced_exit.storage.helpers import to_int


def parse_tokens(raw: str) -> tuple[int, ...]:
    tokens = tuple(int(part.strip()) for part in raw.split(",") if part.strip())
    if not tokens:
        raise argparse.ArgumentTypeError("--tokens must list at least one token id.")
    return tokens


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Write a forced exit request document to Firestore (staging and manual testing).",
    )

    parser.add_argument(
        "--project-id",
        default=os.getenv("FIRESTORE_PROJECT_ID", ""),
        help="GCP project id. Defaults to FIRESTORE_PROJECT_ID from env.",
    )
    parser.add_argument(
        "--collection",
        default=os.getenv("FORCED_EXIT_REQUESTS_COLLECTION", "forced_exit_requests"),
        help="Firestore collection holding forced exit requests.",
    )
    parser.add_argument(
        "--credentials",
        default=os.getenv("FIREBASE_CREDENTIALS", ""),
        help="Service account json path. Defaults to FIREBASE_CREDENTIALS from env.",
    )
    parser.add_argument(
        "--digits-in-id",
        type=int,
        default=to_int(os.getenv("FORCED_EXIT_DIGITS_IN_ID"), 10),
    )
    parser.add_argument("--request-id", type=int, required=True)
    parser.add_argument("--target", required=True, help="0x-prefixed address to exit.")
    parser.add_argument("--tokens", type=parse_tokens, required=True, help="Comma separated token ids.")
    parser.add_argument(
        "--price-in-wei",
        type=int,
        required=True,
        help="Price with the id digits zeroed, e.g. 500000 for --digits-in-id 3.",
    )
    parser.add_argument("--valid-hours", type=float, default=24.0)
    parser.add_argument(
        "--print-only",
        action="store_true",
        help="Print the document and payment amount without writing to Firestore.",
    )

    return parser.parse_args()


def resolve_credentials_path(raw_path: str, repo_root: Path) -> str:
    path = raw_path.strip()
    if not path:
        return ""

    if path.startswith("/app/"):
        mapped = repo_root / path.removeprefix("/app/")
        if mapped.exists():
            return str(mapped)

    return path


def build_request(args: argparse.Namespace) -> ForcedExitRequest:
    now = datetime.now(timezone.utc)
    return ForcedExitRequest(
        id=args.request_id,
        target=args.target.strip().lower(),
        tokens=args.tokens,
        price_in_wei=args.price_in_wei,
        valid_until=now + timedelta(hours=max(0.0, args.valid_hours)),
        created_at=now,
    )


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    load_dotenv(repo_root / ".env")

    args = parse_args()
    digits = validate_digits_in_id(args.digits_in_id)
    request = build_request(args)
    payment_amount = encode_amount(request.price_in_wei, request.id, digits)
    document = request.to_document()

    print(f"[info] collection={args.collection}")
    print(f"[info] payment_amount={payment_amount}")
    print("[info] document=")
    print(json.dumps(document, ensure_ascii=False, indent=2, default=str))

    if args.print_only:
        print("[info] print-only mode: skipped Firestore write")
        return

    credentials_path = resolve_credentials_path(args.credentials, repo_root)
    if credentials_path:
        os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = credentials_path

    project_id = args.project_id.strip()
    if not project_id:
        raise ValueError("FIRESTORE_PROJECT_ID is required (set env or --project-id).")

    from google.cloud import firestore

    client = firestore.Client(project=project_id)
    doc_ref = client.collection(args.collection.strip("/")).document(str(request.id))
    payload: dict[str, Any] = dict(document)
    payload["updated_at"] = firestore.SERVER_TIMESTAMP
    doc_ref.set(payload)

    print("[ok] Forced exit request written")


if __name__ == "__main__":
    main()
