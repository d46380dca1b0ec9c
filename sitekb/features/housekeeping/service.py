"""Scheduled maintenance: stale sweeps, cache purges and bulk re-crawls."""

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from sitekb.config import get_settings
from sitekb.core.errors import (
    EnqueueError,
    InvalidStatusTransition,
    MaintenanceBusy,
    ReindexRejected,
    ResourceNotFound,
)
from sitekb.core.firestore import FirestoreClient, get_firestore_client, utcnow
from sitekb.features.documents.service import DocumentService, get_document_service
from sitekb.features.resources.models import IN_FLIGHT, ResourceStatus
from sitekb.features.resources.registry import ResourceRegistry, get_resource_registry
from sitekb.features.resources.service import ResourceService, get_resource_service
from sitekb.features.scraper.cache import PageCache, get_page_cache

from .lock import MaintenanceLock

logger = logging.getLogger(__name__)

TIMED_OUT = "Processing timed out"


class SweepResult(BaseModel):
    failed: list[str] = Field(default_factory=list)
    documents: list[str] = Field(default_factory=list)


class PurgeResult(BaseModel):
    removed: int


class ReprocessResult(BaseModel):
    queued: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class HousekeepingService:
    """Maintenance operations run by the scheduler."""

    def __init__(
        self,
        firestore: FirestoreClient,
        registry: ResourceRegistry,
        resources: ResourceService,
        documents: DocumentService,
        cache: PageCache,
    ):
        self.firestore = firestore
        self.registry = registry
        self.resources = resources
        self.documents = documents
        self.cache = cache

    async def sweep_stale(self, now: datetime | None = None) -> SweepResult:
        """
        Fail resources and documents stuck in flight past the stale horizon.

        Swept resources can be re-indexed by their tenant and swept documents
        uploaded again. Nothing is re-queued automatically.
        """
        now = now or utcnow()
        horizon = now - timedelta(minutes=get_settings().stale_processing_minutes)
        result = SweepResult()

        for resource in await self.registry.list_in_flight():
            if resource.status_changed_at >= horizon:
                continue
            try:
                await self.registry.mark_status(
                    resource.id, ResourceStatus.FAILED, error=TIMED_OUT
                )
            except InvalidStatusTransition as e:
                # Finished between the listing and the write
                logger.info(f"[{resource.id}] Not swept: {e}")
                continue
            logger.warning(
                f"[{resource.id}] Marked failed after being {resource.status.value} "
                f"since {resource.status_changed_at.isoformat()}"
            )
            result.failed.append(resource.id)

        for document in await self.documents.list_processing():
            if document.updated_at >= horizon:
                continue
            try:
                await self.documents.mark_status(
                    document.id, ResourceStatus.FAILED, error=TIMED_OUT
                )
            except (InvalidStatusTransition, ResourceNotFound) as e:
                logger.info(f"[{document.id}] Not swept: {e}")
                continue
            logger.warning(
                f"[{document.id}] Document marked failed after processing "
                f"since {document.updated_at.isoformat()}"
            )
            result.documents.append(document.id)

        return result

    async def purge_cache(self) -> PurgeResult:
        return PurgeResult(removed=await self.cache.purge_expired())

    async def process_websites(self) -> ReprocessResult:
        """
        Re-queue every website resource that is not already in flight.

        Raises:
            MaintenanceBusy: Another run is in progress
        """
        lock = MaintenanceLock(self.firestore)
        if not await lock.acquire():
            raise MaintenanceBusy("Website reprocessing is already running")

        result = ReprocessResult()
        try:
            for resource in await self.registry.list_websites():
                if resource.status in IN_FLIGHT:
                    result.skipped.append(resource.id)
                    continue
                try:
                    await self.resources.reindex(resource.tenant_id, resource.id)
                except ReindexRejected:
                    result.skipped.append(resource.id)
                except EnqueueError as e:
                    logger.error(f"[{resource.id}] {e}")
                    result.failed.append(resource.id)
                else:
                    result.queued.append(resource.id)
        finally:
            await lock.release()

        logger.info(
            f"Reprocess run: {len(result.queued)} queued, {len(result.skipped)} skipped, "
            f"{len(result.failed)} failed"
        )
        return result


def get_housekeeping_service() -> HousekeepingService:
    """Get housekeeping service instance."""
    return HousekeepingService(
        firestore=get_firestore_client(),
        registry=get_resource_registry(),
        resources=get_resource_service(),
        documents=get_document_service(),
        cache=get_page_cache(),
    )
