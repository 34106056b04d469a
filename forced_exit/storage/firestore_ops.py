from __future__ import annotations

import asyncio
import hashlib
import os
from datetime import datetime, timezone
from typing import Any

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from forced_exit.common import guarded_call, log_event
from forced_exit.sender.types import ForcedExitRequest


def _stored_hashes(value: Any) -> list[str] | None:
    if value is None:
        return None
    return [str(item) for item in value]


class FirestoreStorageOps:
    @staticmethod
    def _doc_id_from_text(value: str) -> str:
        normalized = value.strip().replace("/", "_")
        if not normalized:
            raise ValueError("Document id source must not be empty.")

        if len(normalized) <= 128:
            return normalized

        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
        return f"{normalized[:96]}-{digest}"

    def _request_ref(self, request_id: int) -> Any:
        if self._requests_collection_ref is None:
            raise RuntimeError("Firestore request collection is not initialized.")
        return self._requests_collection_ref.document(str(request_id))

    async def get_request_by_id(self, request_id: int) -> ForcedExitRequest | None:
        snapshot = await asyncio.to_thread(self._request_ref(request_id).get)
        if not snapshot.exists:
            return None

        payload = snapshot.to_dict() or {}
        payload.setdefault("id", request_id)
        return ForcedExitRequest.from_document(payload)

    async def get_unconfirmed_requests(self) -> list[ForcedExitRequest]:
        if self._requests_collection_ref is None:
            raise RuntimeError("Firestore request collection is not initialized.")

        query = self._requests_collection_ref.where(filter=FieldFilter("fulfilled_at", "==", None))

        def load() -> list[dict[str, Any]]:
            documents: list[dict[str, Any]] = []
            for snapshot in query.stream():
                payload = snapshot.to_dict() or {}
                if payload.get("fulfilled_by") is None:
                    continue
                payload.setdefault("id", snapshot.id)
                documents.append(payload)
            return documents

        documents = await asyncio.to_thread(load)
        requests: list[ForcedExitRequest] = []
        for payload in documents:
            try:
                requests.append(ForcedExitRequest.from_document(payload))
            except (KeyError, TypeError, ValueError) as error:
                log_event(
                    self._logger,
                    level="error",
                    event="forced_exit_request_unreadable",
                    message="Skipping malformed forced exit request document",
                    request_id=payload.get("id"),
                    error=str(error),
                )
        requests.sort(key=lambda request: request.id)
        return requests

    async def set_fulfilled_by(
        self,
        request_id: int,
        hashes: list[str] | None,
        *,
        expected: list[str] | None = None,
    ) -> bool:
        """Compare-and-set ``fulfilled_by``; False when the stored value is not ``expected``.

        Fulfilled requests are never touched.
        """
        firestore_client = self._require_firestore()
        doc_ref = self._request_ref(request_id)
        new_value = list(hashes) if hashes is not None else None

        @firestore.transactional
        def apply(transaction: firestore.Transaction) -> bool:
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            payload = snapshot.to_dict() or {}
            if payload.get("fulfilled_at") is not None:
                return False
            if _stored_hashes(payload.get("fulfilled_by")) != expected:
                return False
            transaction.update(
                doc_ref,
                {"fulfilled_by": new_value, "updated_at": firestore.SERVER_TIMESTAMP},
            )
            return True

        return await asyncio.to_thread(lambda: apply(firestore_client.transaction()))

    async def set_fulfilled_at(self, request_id: int, fulfilled_at: datetime) -> bool:
        """Set ``fulfilled_at`` once, and only for a request with a recorded submission."""
        firestore_client = self._require_firestore()
        doc_ref = self._request_ref(request_id)

        @firestore.transactional
        def apply(transaction: firestore.Transaction) -> bool:
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            payload = snapshot.to_dict() or {}
            if payload.get("fulfilled_at") is not None or payload.get("fulfilled_by") is None:
                return False
            transaction.update(
                doc_ref,
                {"fulfilled_at": fulfilled_at, "updated_at": firestore.SERVER_TIMESTAMP},
            )
            return True

        return await asyncio.to_thread(lambda: apply(firestore_client.transaction()))

    async def mark_run_stopped(self, *, reason: str) -> None:
        if self._run_doc_ref is None:
            return

        payload = {
            "status": "stopped",
            "stop_reason": reason,
            "stopped_at": firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }
        await guarded_call(
            lambda: asyncio.to_thread(self._run_doc_ref.set, payload, merge=True),
            logger=self._logger,
            event="run_status_update_failed",
            message="Failed to update run status",
        )

    async def publish_event(
        self,
        *,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
        event_id: str | None = None,
    ) -> None:
        if self._firestore is None or self._events_collection_ref is None:
            log_event(
                self._logger,
                level="warning",
                event="publish_skipped",
                message="Skipping Firestore event because client is not ready",
            )
            return

        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc),
            "server_timestamp": firestore.SERVER_TIMESTAMP,
            "level": level,
            "event": event,
            "message": message,
            "service_id": self.settings.service_id,
            "run_id": self.settings.run_id,
            "env": self.settings.service_env,
            "schema_version": self.settings.schema_version,
        }
        if details:
            payload["details"] = details

        async def write_event() -> None:
            if event_id:
                event_ref = self._events_collection_ref.document(self._doc_id_from_text(event_id))
                await asyncio.to_thread(event_ref.set, payload, merge=True)
                return

            await asyncio.to_thread(self._events_collection_ref.add, payload)

        await guarded_call(
            write_event,
            logger=self._logger,
            event="publish_failed",
            message="Failed to publish Firestore event",
            level="error",
        )

    async def _ensure_service_namespace(self) -> None:
        if self._service_doc_ref is None or self._run_doc_ref is None:
            raise RuntimeError("Firestore namespace references are not initialized.")

        service_payload: dict[str, Any] = {
            "service_id": self.settings.service_id,
            "env": self.settings.service_env,
            "schema_version": self.settings.schema_version,
            "requests_collection": self.settings.requests_collection,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }

        run_payload: dict[str, Any] = {
            "run_id": self.settings.run_id,
            "service_id": self.settings.service_id,
            "env": self.settings.service_env,
            "status": "running",
            "pid": os.getpid(),
            "started_at": firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }

        await asyncio.gather(
            asyncio.to_thread(self._service_doc_ref.set, service_payload, merge=True),
            asyncio.to_thread(self._run_doc_ref.set, run_payload, merge=True),
        )

    def _initialize_namespace_refs(self) -> None:
        firestore_client = self._require_firestore()

        self._requests_collection_ref = firestore_client.collection(self.settings.requests_collection)
        self._service_doc_ref = firestore_client.document(
            f"{self.settings.service_collection}/{self.settings.service_id}"
        )
        self._run_doc_ref = self._service_doc_ref.collection(self.settings.runs_collection).document(
            self.settings.run_id
        )
        self._events_collection_ref = self._run_doc_ref.collection(self.settings.events_collection)

    def _require_firestore(self) -> firestore.Client:
        if self._firestore is None:
            raise RuntimeError("Firestore client is not initialized.")
        return self._firestore
