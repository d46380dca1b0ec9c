"""Ingestion worker: crawls websites and extracts documents from queue messages."""

import logging

from sitekb.core.errors import FetchError, ResourceNotFound
from sitekb.features.documents.service import DocumentService, get_document_service
from sitekb.features.resources.models import IN_FLIGHT, CrawlDetails, ResourceKind, ResourceStatus
from sitekb.features.resources.registry import ResourceRegistry, get_resource_registry
from sitekb.features.scraper.crawler import SiteIndexBuilder, get_site_index_builder

from .models import IngestionMessage, IngestionTarget

logger = logging.getLogger(__name__)


class IngestionWorker:
    """Process one ingestion message and report the outcome to the registry."""

    def __init__(
        self,
        registry: ResourceRegistry,
        documents: DocumentService,
        builder: SiteIndexBuilder,
    ):
        self.registry = registry
        self.documents = documents
        self.builder = builder

    async def handle(self, message: IngestionMessage) -> None:
        """Dispatch a decoded queue message."""
        if message.target == IngestionTarget.DOCUMENT:
            await self.documents.process_document(message.id)
        else:
            await self.crawl_resource(message.id)

    async def crawl_resource(self, resource_id: str) -> None:
        """
        Crawl a claimed website resource.

        Messages for resources that were deleted, are no longer in flight or
        are already being crawled are redeliveries and are dropped.
        """
        try:
            resource = await self.registry.get_resource(resource_id)
        except ResourceNotFound:
            logger.warning(f"[{resource_id}] Resource no longer exists, dropping message")
            return

        if resource.status not in IN_FLIGHT:
            logger.info(f"[{resource_id}] Resource is {resource.status.value}, dropping message")
            return

        if resource.kind != ResourceKind.WEBSITE_URL or not resource.url:
            await self.registry.mark_status(
                resource_id,
                ResourceStatus.FAILED,
                error=f"Nothing to crawl for {resource.kind.value} resource",
            )
            return

        try:
            claimed = await self.registry.claim_for_crawl(resource_id)
        except ResourceNotFound:
            logger.warning(f"[{resource_id}] Resource deleted before crawl, dropping message")
            return
        if claimed is None:
            logger.info(f"[{resource_id}] Crawl already claimed, dropping message")
            return

        try:
            result = await self.builder.build(resource.id, resource.tenant_id, resource.url)
        except FetchError as e:
            await self.registry.mark_status(resource_id, ResourceStatus.FAILED, error=str(e))
            return
        except Exception as e:
            logger.exception(f"[{resource_id}] Crawl failed: {type(e).__name__}: {e}")
            await self.registry.mark_status(
                resource_id, ResourceStatus.FAILED, error=f"Crawl failed: {e}"
            )
            return

        await self.registry.mark_status(
            resource_id,
            ResourceStatus.COMPLETED,
            details=CrawlDetails(
                site_index_id=result.site_index_id,
                pages_crawled=result.pages_crawled,
                content_size=result.content_size,
                keywords=result.keywords,
            ),
        )


def get_ingestion_worker() -> IngestionWorker:
    """Get ingestion worker instance."""
    return IngestionWorker(
        registry=get_resource_registry(),
        documents=get_document_service(),
        builder=get_site_index_builder(),
    )
