"""Firestore client wrapper for resources, site indexes, documents and cache."""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from google.api_core.exceptions import AlreadyExists, FailedPrecondition
from google.cloud import firestore

from sitekb.config import get_settings

logger = logging.getLogger(__name__)

RESOURCES = "resources"
SITE_INDEXES = "site_indexes"
PAGE_CACHE = "page_cache"
DOCUMENTS = "documents"
CONVERSATIONS = "conversations"
SYSTEM_STATE = "system_state"

# Optimistic retries before a conditional write gives up
CAS_MAX_ATTEMPTS = 5


def utcnow() -> datetime:
    """Timezone-aware UTC now, comparable with Firestore timestamps."""
    return datetime.now(timezone.utc)


class ConcurrentUpdateError(Exception):
    """A conditional write lost every optimistic retry."""


class FirestoreClient:
    """Wrapper for Firestore operations."""

    _instance: "FirestoreClient | None" = None
    _db: firestore.Client | None = None

    def __new__(cls) -> "FirestoreClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def db(self) -> firestore.Client:
        """Get or create Firestore client."""
        if self._db is None:
            settings = get_settings()
            # Use project from settings if provided, otherwise auto-detect
            project = settings.google_cloud_project if settings.google_cloud_project else None
            self._db = firestore.Client(project=project)
        return self._db

    # Generic conditional update
    async def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        decide: Callable[[dict[str, Any] | None], dict[str, Any] | None],
    ) -> dict[str, Any] | None:
        """
        Atomically read-modify-write a single record.

        ``decide`` receives the current record (or None if it does not exist)
        and returns the fields to write, or None to leave the record alone.
        It may raise to abort. The write is conditioned on the record's
        ``update_time`` so a concurrent writer forces a re-read and a second
        call to ``decide``.

        Returns:
            The record after the operation, or None if it does not exist
        """
        doc_ref = self.db.collection(collection).document(doc_id)

        for attempt in range(CAS_MAX_ATTEMPTS):
            snapshot = doc_ref.get()
            current = snapshot.to_dict() if snapshot.exists else None
            changes = decide(current)

            if changes is None:
                return current

            try:
                if current is None:
                    record = {**changes, "id": doc_id}
                    doc_ref.create(record)
                    return record

                option = self.db.write_option(last_update_time=snapshot.update_time)
                doc_ref.update(changes, option=option)
                return {**current, **changes}
            except (FailedPrecondition, AlreadyExists):
                logger.info(
                    f"[{doc_id}] Concurrent write on {collection}, retrying "
                    f"({attempt + 1}/{CAS_MAX_ATTEMPTS})"
                )

        raise ConcurrentUpdateError(f"{collection}/{doc_id} changed on every attempt")

    # Resource operations
    async def create_resource(self, resource_data: dict[str, Any]) -> dict[str, Any]:
        """Create a new resource record."""
        ref = self.db.collection(RESOURCES).document()
        now = utcnow()
        resource_data = {
            **resource_data,
            "id": ref.id,
            "created_at": now,
            "updated_at": now,
            "status_changed_at": now,
        }
        ref.set(resource_data)
        return resource_data

    async def get_resource(self, resource_id: str) -> dict[str, Any] | None:
        """Get resource by ID."""
        doc = self.db.collection(RESOURCES).document(resource_id).get()
        return doc.to_dict() if doc.exists else None

    async def list_resources(self, tenant_id: str) -> list[dict[str, Any]]:
        """List resources for a tenant, newest first."""
        docs = (
            self.db.collection(RESOURCES)
            .where("tenant_id", "==", tenant_id)
            .stream()
        )
        result = [doc.to_dict() for doc in docs]
        # Sorted in memory to avoid a composite index
        result.sort(key=lambda x: x["created_at"], reverse=True)
        return result

    async def list_resources_by_status(self, statuses: list[str]) -> list[dict[str, Any]]:
        """List resources across all tenants in any of the given statuses."""
        docs = (
            self.db.collection(RESOURCES)
            .where("status", "in", statuses)
            .stream()
        )
        return [doc.to_dict() for doc in docs]

    async def list_resources_by_kind(self, kind: str) -> list[dict[str, Any]]:
        """List resources across all tenants of one kind."""
        docs = self.db.collection(RESOURCES).where("kind", "==", kind).stream()
        return [doc.to_dict() for doc in docs]

    async def update_resource(self, resource_id: str, update_data: dict[str, Any]) -> None:
        """Update resource metadata fields."""
        ref = self.db.collection(RESOURCES).document(resource_id)
        update_data["updated_at"] = utcnow()
        ref.update(update_data)

    async def delete_resource(self, resource_id: str) -> None:
        """Delete a resource record."""
        self.db.collection(RESOURCES).document(resource_id).delete()

    # Site index operations
    async def get_site_index_for_resource(self, resource_id: str) -> dict[str, Any] | None:
        """Get the site index owned by a resource."""
        docs = (
            self.db.collection(SITE_INDEXES)
            .where("resource_id", "==", resource_id)
            .limit(1)
            .stream()
        )
        for doc in docs:
            return doc.to_dict()
        return None

    async def create_site_index(self, index_data: dict[str, Any]) -> dict[str, Any]:
        """Create a new site index record."""
        ref = self.db.collection(SITE_INDEXES).document()
        now = utcnow()
        index_data = {
            **index_data,
            "id": ref.id,
            "created_at": now,
            "updated_at": now,
        }
        ref.set(index_data)
        return index_data

    async def update_site_index(self, index_id: str, update_data: dict[str, Any]) -> None:
        """Update site index fields."""
        ref = self.db.collection(SITE_INDEXES).document(index_id)
        update_data["updated_at"] = utcnow()
        ref.update(update_data)

    async def list_site_indexes(self, tenant_id: str) -> list[dict[str, Any]]:
        """List site indexes for a tenant."""
        query = self.db.collection(SITE_INDEXES).where("tenant_id", "==", tenant_id)
        return [doc.to_dict() for doc in query.stream()]

    async def delete_site_indexes_for_resource(self, resource_id: str) -> int:
        """Delete every site index owned by a resource."""
        docs = list(
            self.db.collection(SITE_INDEXES)
            .where("resource_id", "==", resource_id)
            .stream()
        )
        for doc in docs:
            doc.reference.delete()
        return len(docs)

    # Page cache operations
    async def get_cached_page(self, key: str) -> dict[str, Any] | None:
        """Get a cached page record by key."""
        doc = self.db.collection(PAGE_CACHE).document(key).get()
        return doc.to_dict() if doc.exists else None

    async def set_cached_page(self, key: str, page_data: dict[str, Any]) -> None:
        """Write a cached page record, replacing any previous one."""
        self.db.collection(PAGE_CACHE).document(key).set(page_data)

    async def delete_expired_pages(self, now: datetime) -> int:
        """Delete cached pages that expired before ``now``."""
        docs = list(
            self.db.collection(PAGE_CACHE)
            .where("expires_at", "<", now)
            .stream()
        )
        # Page bodies are large, keep batches small
        for i in range(0, len(docs), 50):
            batch = self.db.batch()
            for doc in docs[i:i + 50]:
                batch.delete(doc.reference)
            batch.commit()
        return len(docs)

    # Document operations
    async def create_document(self, doc_data: dict[str, Any]) -> dict[str, Any]:
        """Create a new document record."""
        doc_ref = self.db.collection(DOCUMENTS).document()
        now = utcnow()
        doc_data = {
            **doc_data,
            "id": doc_ref.id,
            "created_at": now,
            "updated_at": now,
        }
        doc_ref.set(doc_data)
        return doc_data

    async def get_document(self, doc_id: str) -> dict[str, Any] | None:
        """Get document by ID."""
        doc = self.db.collection(DOCUMENTS).document(doc_id).get()
        return doc.to_dict() if doc.exists else None

    async def list_documents(
        self, tenant_id: str, status: str | None = None
    ) -> list[dict[str, Any]]:
        """List documents for a tenant, newest first."""
        query = self.db.collection(DOCUMENTS).where("tenant_id", "==", tenant_id)
        if status:
            query = query.where("processing_status", "==", status)
        result = [doc.to_dict() for doc in query.stream()]
        result.sort(key=lambda x: x["created_at"], reverse=True)
        return result

    async def list_documents_by_status(self, status: str) -> list[dict[str, Any]]:
        """List documents across all tenants in one processing status."""
        docs = (
            self.db.collection(DOCUMENTS)
            .where("processing_status", "==", status)
            .stream()
        )
        return [doc.to_dict() for doc in docs]

    async def delete_document(self, doc_id: str) -> None:
        """Delete a document record."""
        self.db.collection(DOCUMENTS).document(doc_id).delete()

    # Conversation operations
    async def create_conversation(self, tenant_id: str, session_id: str) -> dict[str, Any]:
        """Create a new conversation."""
        conv_ref = self.db.collection(CONVERSATIONS).document()
        conv_data = {
            "id": conv_ref.id,
            "tenant_id": tenant_id,
            "session_id": session_id,
            "created_at": utcnow(),
            "last_message_at": utcnow(),
        }
        conv_ref.set(conv_data)
        return conv_data

    async def get_conversation_by_session(
        self, tenant_id: str, session_id: str
    ) -> dict[str, Any] | None:
        """Get a tenant's conversation by session ID."""
        convs = (
            self.db.collection(CONVERSATIONS)
            .where("tenant_id", "==", tenant_id)
            .where("session_id", "==", session_id)
            .limit(1)
            .stream()
        )
        for conv in convs:
            return conv.to_dict()
        return None

    async def add_message(
        self, conversation_id: str, role: str, content: str, sources: list[dict] | None = None
    ) -> dict[str, Any]:
        """Add a message to a conversation."""
        conv_ref = self.db.collection(CONVERSATIONS).document(conversation_id)
        msg_ref = conv_ref.collection("messages").document()

        msg_data = {
            "id": msg_ref.id,
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "sources": sources,
            "created_at": utcnow(),
        }
        msg_ref.set(msg_data)

        conv_ref.update({"last_message_at": utcnow()})

        return msg_data

    async def get_messages(self, conversation_id: str, limit: int = 10) -> list[dict[str, Any]]:
        """Get recent messages from a conversation, oldest first."""
        conv_ref = self.db.collection(CONVERSATIONS).document(conversation_id)
        messages = (
            conv_ref.collection("messages")
            .order_by("created_at", direction=firestore.Query.DESCENDING)
            .limit(limit)
            .stream()
        )
        return list(reversed([msg.to_dict() for msg in messages]))


def get_firestore_client() -> FirestoreClient:
    """Get Firestore client instance (dependency injection)."""
    return FirestoreClient()
