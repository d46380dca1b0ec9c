"""Document service for upload and processing."""

import logging
from typing import Any

from sitekb.config import get_settings
from sitekb.core.errors import (
    EnqueueError,
    ExtractionError,
    InvalidStatusTransition,
    ResourceNotFound,
)
from sitekb.core.firestore import DOCUMENTS, FirestoreClient, get_firestore_client, utcnow
from sitekb.core.storage import StorageClient, get_storage_client
from sitekb.features.ingestion.gateway import IngestionGateway, get_ingestion_gateway
from sitekb.features.ingestion.models import IngestionMessage, IngestionTarget
from sitekb.features.resources.models import ResourceStatus

from .models import DOCUMENT_TRANSITIONS, Document
from .processor import DocumentProcessor, get_document_processor

logger = logging.getLogger(__name__)


class DocumentService:
    """Service for document operations."""

    def __init__(
        self,
        firestore: FirestoreClient,
        storage: StorageClient,
        gateway: IngestionGateway,
        processor: DocumentProcessor,
    ):
        self.firestore = firestore
        self.storage = storage
        self.gateway = gateway
        self.processor = processor

    async def upload_document(
        self,
        tenant_id: str,
        file_content: bytes,
        filename: str,
        content_type: str,
        user_id: str | None = None,
    ) -> Document:
        """
        Store a document and queue it for text extraction.

        Args:
            tenant_id: Owning tenant
            file_content: Raw file bytes
            filename: Original filename
            content_type: MIME type
            user_id: Uploading user

        Returns:
            Document record in processing status

        Raises:
            EnqueueError: The document was stored but could not be queued
        """
        # 1. Upload to Cloud Storage
        storage_path = await self.storage.upload_file(
            file_content=file_content,
            filename=filename,
            content_type=content_type,
            tenant_id=tenant_id,
        )

        # 2. Create document record (pending status)
        record = await self.firestore.create_document({
            "tenant_id": tenant_id,
            "filename": filename,
            "content_type": content_type,
            "file_size": len(file_content),
            "storage_path": storage_path,
            "extracted_text": None,
            "processing_status": ResourceStatus.PENDING.value,
            "processing_error": None,
            "created_by": user_id,
        })
        doc_id = record["id"]
        logger.info(f"[{doc_id}] Stored {filename} ({len(file_content)} bytes) at {storage_path}")

        # 3. Claim and hand off to the worker
        document = await self.mark_status(doc_id, ResourceStatus.PROCESSING)
        message = IngestionMessage(
            target=IngestionTarget.DOCUMENT,
            id=doc_id,
            tenant_id=tenant_id,
            kind="document",
            storage_path=storage_path,
            timestamp=utcnow(),
        )
        try:
            message_id = await self.gateway.publish(message)
        except EnqueueError as e:
            logger.error(f"[{doc_id}] {e}")
            await self.mark_status(doc_id, ResourceStatus.FAILED, error=str(e))
            raise

        logger.info(f"[{doc_id}] Queued as message {message_id}")
        return document

    async def process_document(self, doc_id: str) -> Document | None:
        """
        Extract and store a document's text.

        Called by the ingestion worker. Documents that are not processing
        (already handled, or deleted) are skipped.

        Returns:
            The updated document, or None if skipped
        """
        record = await self.firestore.get_document(doc_id)
        if record is None:
            logger.warning(f"[{doc_id}] Document no longer exists, skipping")
            return None

        document = Document.model_validate(record)
        if document.processing_status != ResourceStatus.PROCESSING:
            logger.info(
                f"[{doc_id}] Document is {document.processing_status.value}, skipping"
            )
            return None

        try:
            logger.info(f"[{doc_id}] Extracting text from {document.content_type}...")
            content = await self.storage.download_file(document.storage_path)
            text = await self.processor.extract_text(content, document.content_type)
        except ExtractionError as e:
            logger.error(f"[{doc_id}] Extraction failed: {e}")
            return await self.mark_status(doc_id, ResourceStatus.FAILED, error=str(e))
        except Exception as e:
            logger.exception(f"[{doc_id}] Processing failed: {type(e).__name__}: {e}")
            return await self.mark_status(
                doc_id, ResourceStatus.FAILED, error=f"Processing failed: {e}"
            )

        limit = get_settings().stored_text_max_chars
        if len(text) > limit:
            logger.warning(f"[{doc_id}] Keeping the first {limit} of {len(text)} characters")
            text = text[:limit]

        logger.info(f"[{doc_id}] Extracted {len(text)} characters")
        try:
            return await self.mark_status(doc_id, ResourceStatus.COMPLETED, extracted_text=text)
        except ResourceNotFound:
            logger.warning(f"[{doc_id}] Document deleted during processing")
            return None
        except InvalidStatusTransition as e:
            # Swept as stale while extracting
            logger.warning(f"[{doc_id}] Extracted text discarded: {e}")
            return None
        except Exception as e:
            logger.exception(f"[{doc_id}] Could not store extracted text: {e}")
            return await self.mark_status(
                doc_id, ResourceStatus.FAILED, error=f"Could not store extracted text: {e}"
            )

    async def mark_status(
        self,
        doc_id: str,
        status: ResourceStatus,
        error: str | None = None,
        extracted_text: str | None = None,
    ) -> Document:
        """Conditionally move a document to ``status``. Same status is a no-op."""

        def decide(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is None:
                raise ResourceNotFound(f"Document {doc_id} not found")

            current_status = ResourceStatus.parse(current.get("processing_status"))
            if current_status == status:
                return None
            if status not in DOCUMENT_TRANSITIONS.get(current_status, frozenset()):
                raise InvalidStatusTransition(current_status.value, status.value)

            changes: dict[str, Any] = {
                "processing_status": status.value,
                "processing_error": (error or "Unknown error") if status == ResourceStatus.FAILED else None,
                "updated_at": utcnow(),
            }
            if extracted_text is not None:
                changes["extracted_text"] = extracted_text
            return changes

        record = await self.firestore.compare_and_set(DOCUMENTS, doc_id, decide)
        return Document.model_validate(record)

    async def list_documents(self, tenant_id: str) -> list[Document]:
        """List all documents for a tenant."""
        return [Document.model_validate(d) for d in await self.firestore.list_documents(tenant_id)]

    async def list_processing(self) -> list[Document]:
        """Documents of every tenant waiting for extraction."""
        records = await self.firestore.list_documents_by_status(ResourceStatus.PROCESSING.value)
        return [Document.model_validate(r) for r in records]

    async def get_document(self, doc_id: str, tenant_id: str) -> Document:
        """
        Get a tenant's document.

        Raises:
            ResourceNotFound: Missing, or owned by another tenant
        """
        record = await self.firestore.get_document(doc_id)
        if record is None or record.get("tenant_id") != tenant_id:
            raise ResourceNotFound(f"Document {doc_id} not found")
        return Document.model_validate(record)

    async def delete_document(self, doc_id: str, tenant_id: str) -> None:
        """Delete a document record and its stored file."""
        document = await self.get_document(doc_id, tenant_id)
        try:
            await self.storage.delete_file(document.storage_path)
        except Exception as e:
            logger.warning(f"[{doc_id}] Could not delete stored file: {e}")
        await self.firestore.delete_document(doc_id)
        logger.info(f"[{doc_id}] Document deleted")


def get_document_service() -> DocumentService:
    """Get document service instance."""
    return DocumentService(
        firestore=get_firestore_client(),
        storage=get_storage_client(),
        gateway=get_ingestion_gateway(),
        processor=get_document_processor(),
    )
