"""Resource registry: lifecycle and status of knowledge base resources."""

import logging
from typing import Any

from sitekb.core.errors import ReindexRejected, ResourceNotFound
from sitekb.core.firestore import RESOURCES, FirestoreClient, get_firestore_client, utcnow
from sitekb.core.storage import StorageClient, get_storage_client
from sitekb.features.scraper.sitemap import SiteIndexStore

from .models import (
    CRAWL_CLAIMABLE,
    IN_FLIGHT,
    REINDEXABLE,
    CrawlDetails,
    ExtractionDetails,
    OpaqueDetails,
    QueueDetails,
    Resource,
    ResourceKind,
    ResourceSource,
    ResourceStatus,
    StatusDetails,
    check_transition,
)

logger = logging.getLogger(__name__)


def _detail_fields(details: StatusDetails | None) -> dict[str, Any]:
    """Resource fields carried by a status report."""
    if isinstance(details, CrawlDetails):
        return {
            "site_index_id": details.site_index_id,
            "pages_crawled": details.pages_crawled,
            "content_size": details.content_size,
            "keywords": details.keywords,
        }
    if isinstance(details, ExtractionDetails):
        return {"content_size": details.content_size, "keywords": details.keywords}
    if isinstance(details, QueueDetails):
        return {"last_message_id": details.message_id}
    if isinstance(details, OpaqueDetails):
        logger.debug(f"Ignoring opaque status details: {details.data}")
    return {}


class ResourceRegistry:
    """Create, track and delete tenant resources."""

    def __init__(
        self,
        firestore: FirestoreClient,
        storage: StorageClient,
        site_indexes: SiteIndexStore | None = None,
    ):
        self.firestore = firestore
        self.storage = storage
        self.site_indexes = site_indexes or SiteIndexStore(firestore)

    async def create_resource(
        self,
        tenant_id: str,
        kind: ResourceKind,
        source: ResourceSource,
        created_by: str | None = None,
        extracted_text: str | None = None,
    ) -> Resource:
        """
        Register a new resource in ``pending`` status.

        Args:
            tenant_id: Owning tenant
            kind: Resource kind
            source: What the resource points at
            created_by: User who added it
            extracted_text: Text already extracted at upload time

        Returns:
            The stored resource
        """
        record = await self.firestore.create_resource({
            "tenant_id": tenant_id,
            "kind": kind.value,
            "source": source.model_dump(),
            "status": ResourceStatus.PENDING.value,
            "error": None,
            "pages_crawled": 0,
            "content_size": 0,
            "keywords": [],
            "site_index_id": None,
            "extracted_text": extracted_text,
            "created_by": created_by,
        })
        logger.info(f"[{record['id']}] Created {kind.value} resource for tenant {tenant_id}")
        return Resource.model_validate(record)

    async def get_resource(self, resource_id: str, tenant_id: str | None = None) -> Resource:
        """
        Get a resource, optionally scoped to a tenant.

        Raises:
            ResourceNotFound: Missing, or owned by another tenant
        """
        record = await self.firestore.get_resource(resource_id)
        if record is None or (tenant_id is not None and record.get("tenant_id") != tenant_id):
            raise ResourceNotFound(f"Resource {resource_id} not found")
        return Resource.model_validate(record)

    async def list_resources(self, tenant_id: str) -> list[Resource]:
        records = await self.firestore.list_resources(tenant_id)
        return [Resource.model_validate(r) for r in records]

    async def list_in_flight(self) -> list[Resource]:
        """Resources of every tenant that are queued, processing or crawling."""
        records = await self.firestore.list_resources_by_status([s.value for s in IN_FLIGHT])
        return [Resource.model_validate(r) for r in records]

    async def list_websites(self) -> list[Resource]:
        records = await self.firestore.list_resources_by_kind(ResourceKind.WEBSITE_URL.value)
        return [Resource.model_validate(r) for r in records]

    async def mark_status(
        self,
        resource_id: str,
        status: ResourceStatus,
        error: str | None = None,
        details: StatusDetails | None = None,
    ) -> Resource:
        """
        Move a resource to ``status`` with a single conditional write.

        Marking a resource with the status it already has is a no-op, so
        repeated reports from the worker are harmless. Moving to FAILED
        always records an error message.

        Raises:
            ResourceNotFound: The resource does not exist
            InvalidStatusTransition: The move is not allowed from the current status
        """

        def decide(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is None:
                raise ResourceNotFound(f"Resource {resource_id} not found")

            current_status = ResourceStatus.parse(current.get("status"))
            if current_status == status:
                return None
            check_transition(current_status, status)

            now = utcnow()
            changes: dict[str, Any] = {
                "status": status.value,
                "status_changed_at": now,
                "updated_at": now,
            }
            if status == ResourceStatus.FAILED:
                changes["error"] = error or current.get("error") or "Unknown error"
            else:
                changes["error"] = error
            changes.update(_detail_fields(details))
            return changes

        record = await self.firestore.compare_and_set(RESOURCES, resource_id, decide)
        resource = Resource.model_validate(record)
        logger.info(f"[{resource_id}] Status is now {resource.status.value}")
        return resource

    async def claim_for_crawl(self, resource_id: str) -> Resource | None:
        """
        Move a ``queued`` or ``processing`` resource to ``crawling``.

        Returns None, without writing, when the resource is in any other
        status. A resource already ``crawling`` belongs to another delivery
        of the same message.

        Raises:
            ResourceNotFound: The resource does not exist
        """
        claimed = False

        def decide(current: dict[str, Any] | None) -> dict[str, Any] | None:
            nonlocal claimed
            claimed = False
            if current is None:
                raise ResourceNotFound(f"Resource {resource_id} not found")
            if ResourceStatus.parse(current.get("status")) not in CRAWL_CLAIMABLE:
                return None

            claimed = True
            now = utcnow()
            return {
                "status": ResourceStatus.CRAWLING.value,
                "error": None,
                "status_changed_at": now,
                "updated_at": now,
            }

        record = await self.firestore.compare_and_set(RESOURCES, resource_id, decide)
        if not claimed:
            return None
        logger.info(f"[{resource_id}] Claimed for crawling")
        return Resource.model_validate(record)

    async def record_details(self, resource_id: str, details: StatusDetails) -> None:
        """Attach details without changing status."""
        fields = _detail_fields(details)
        if fields:
            await self.firestore.update_resource(resource_id, fields)

    async def request_reindex(self, resource_id: str, tenant_id: str | None = None) -> Resource:
        """
        Claim a website resource for a new crawl by moving it to ``queued``.

        The check and the claim are a single conditional write, so of many
        concurrent requests exactly one succeeds.

        Raises:
            ResourceNotFound: The resource does not exist for this tenant
            ReindexRejected: A crawl is already queued or running
            ValueError: The resource is not a website
        """

        def decide(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is None or (
                tenant_id is not None and current.get("tenant_id") != tenant_id
            ):
                raise ResourceNotFound(f"Resource {resource_id} not found")

            current_status = ResourceStatus.parse(current.get("status"))
            if current_status in IN_FLIGHT or current_status not in REINDEXABLE:
                raise ReindexRejected(resource_id, current_status.value)
            if current.get("kind") != ResourceKind.WEBSITE_URL.value:
                raise ValueError("Only website resources can be re-indexed")

            now = utcnow()
            return {
                "status": ResourceStatus.QUEUED.value,
                "error": None,
                "status_changed_at": now,
                "updated_at": now,
            }

        record = await self.firestore.compare_and_set(RESOURCES, resource_id, decide)
        logger.info(f"[{resource_id}] Re-index requested")
        return Resource.model_validate(record)

    async def delete_resource(self, resource_id: str, tenant_id: str) -> None:
        """
        Delete a resource, its site index and its stored file.

        Failure to delete the stored file is logged and does not block
        deletion of the record.
        """
        resource = await self.get_resource(resource_id, tenant_id)

        removed = await self.site_indexes.delete_for_resource(resource_id)
        if removed:
            logger.info(f"[{resource_id}] Deleted {removed} site index(es)")

        if resource.storage_path:
            try:
                await self.storage.delete_file(resource.storage_path)
            except Exception as e:
                logger.warning(f"[{resource_id}] Could not delete stored file: {e}")

        await self.firestore.delete_resource(resource_id)
        logger.info(f"[{resource_id}] Resource deleted")


def get_resource_registry() -> ResourceRegistry:
    """Get resource registry instance."""
    return ResourceRegistry(
        firestore=get_firestore_client(),
        storage=get_storage_client(),
    )
