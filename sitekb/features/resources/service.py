"""Resource service: adding, uploading and re-indexing resources."""

import logging

from sitekb.config import get_settings
from sitekb.core.storage import StorageClient, get_storage_client
from sitekb.features.ingestion.gateway import IngestionGateway, get_ingestion_gateway
from sitekb.features.scraper.extractor import HTMLExtractor
from sitekb.features.scraper.keywords import derive_keywords

from .models import (
    Ack,
    ExtractionDetails,
    FileSource,
    Resource,
    ResourceKind,
    ResourceStatus,
    WebsiteSource,
)
from .registry import ResourceRegistry, get_resource_registry

logger = logging.getLogger(__name__)


class ResourceService:
    """Service for resource operations that span registry, storage and queue."""

    def __init__(
        self,
        registry: ResourceRegistry,
        gateway: IngestionGateway,
        storage: StorageClient,
        extractor: HTMLExtractor | None = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.storage = storage
        self.extractor = extractor or HTMLExtractor()

    async def add_website(self, tenant_id: str, url: str, user_id: str | None = None) -> Resource:
        """
        Register a website and queue its first crawl.

        Raises:
            EnqueueError: The crawl could not be queued; the resource is failed
        """
        resource = await self.registry.create_resource(
            tenant_id,
            ResourceKind.WEBSITE_URL,
            WebsiteSource(url=url),
            created_by=user_id,
        )
        await self.registry.mark_status(resource.id, ResourceStatus.PROCESSING)
        await self.gateway.enqueue(resource.id)
        return await self.registry.get_resource(resource.id)

    async def upload_file(
        self,
        tenant_id: str,
        kind: ResourceKind,
        file_content: bytes,
        filename: str,
        content_type: str,
        user_id: str | None = None,
    ) -> Resource:
        """
        Store a raw HTML page or screenshot.

        Both are complete on arrival. Raw HTML has its text and keywords
        extracted immediately so it can be retrieved like a document.
        """
        if kind not in (ResourceKind.RAW_HTML, ResourceKind.SCREENSHOT):
            raise ValueError(f"Uploads of kind {kind.value} are not supported here")

        storage_path = await self.storage.upload_file(
            file_content=file_content,
            filename=filename,
            content_type=content_type,
            tenant_id=tenant_id,
            folder=kind.value,
        )
        source = FileSource(
            kind=kind.value,
            storage_path=storage_path,
            filename=filename,
            content_type=content_type,
        )

        details = ExtractionDetails(content_size=len(file_content))
        text = None
        if kind == ResourceKind.RAW_HTML:
            html = file_content.decode("utf-8", errors="replace")
            page = self.extractor.extract(html, "")
            text = page.content[:get_settings().stored_text_max_chars]
            details = ExtractionDetails(
                content_size=len(page.content),
                keywords=derive_keywords(
                    page.title, page.description, page.content, page.meta_keywords
                ),
            )

        resource = await self.registry.create_resource(
            tenant_id, kind, source, created_by=user_id, extracted_text=text
        )
        return await self.registry.mark_status(
            resource.id, ResourceStatus.COMPLETED, details=details
        )

    async def reindex(self, tenant_id: str, resource_id: str) -> Ack:
        """
        Claim a website for a new crawl and queue it.

        Raises:
            ResourceNotFound: No such resource for this tenant
            ReindexRejected: A crawl is already in flight
            EnqueueError: The crawl could not be queued
        """
        await self.registry.request_reindex(resource_id, tenant_id)
        return await self.gateway.enqueue(resource_id)


def get_resource_service() -> ResourceService:
    """Get resource service instance."""
    return ResourceService(
        registry=get_resource_registry(),
        gateway=get_ingestion_gateway(),
        storage=get_storage_client(),
    )
