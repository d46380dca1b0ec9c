"""Hand-off of resources and documents to the ingestion queue."""

import logging

from sitekb.core.errors import EnqueueError
from sitekb.core.firestore import utcnow
from sitekb.core.pubsub import QueueClient, get_queue_client
from sitekb.features.resources.models import Ack, QueueDetails, ResourceStatus
from sitekb.features.resources.registry import ResourceRegistry, get_resource_registry

from .models import IngestionMessage, IngestionTarget

logger = logging.getLogger(__name__)

# Statuses in which a resource has been claimed for an ingestion attempt
ENQUEUEABLE = frozenset({ResourceStatus.QUEUED, ResourceStatus.PROCESSING})


class IngestionGateway:
    """Publish ingestion work to Pub/Sub."""

    def __init__(self, registry: ResourceRegistry, queue: QueueClient):
        self.registry = registry
        self.queue = queue

    async def test_queue_connection(self) -> bool:
        """Ping the topic. Failures are logged, never raised."""
        try:
            return await self.queue.ping()
        except Exception as e:
            logger.warning(f"Queue connectivity check failed: {e}")
            return False

    async def publish(self, message: IngestionMessage) -> str:
        """
        Publish a message with the target id as ordering key.

        Raises:
            EnqueueError: The message was not accepted by the queue
        """
        try:
            return await self.queue.send(
                message.model_dump(mode="json"), ordering_key=message.id
            )
        except Exception as e:
            raise EnqueueError(f"Failed to queue for processing: {e}") from e

    async def enqueue(self, resource_id: str) -> Ack:
        """
        Queue a claimed resource for crawling or extraction.

        On failure the resource is marked failed with the reason.

        Args:
            resource_id: Resource already moved to processing or queued

        Returns:
            Acknowledgement with the queue message id

        Raises:
            EnqueueError: The resource is not claimed or publishing failed
        """
        resource = await self.registry.get_resource(resource_id)
        if resource.status not in ENQUEUEABLE:
            raise EnqueueError(
                f"Resource {resource_id} must be processing or queued, not {resource.status.value}"
            )

        if not await self.test_queue_connection():
            logger.warning(f"[{resource_id}] Queue ping failed, attempting to publish anyway")

        message = IngestionMessage(
            target=IngestionTarget.RESOURCE,
            id=resource.id,
            tenant_id=resource.tenant_id,
            kind=resource.kind.value,
            url=resource.url,
            storage_path=resource.storage_path,
            timestamp=utcnow(),
        )

        try:
            message_id = await self.publish(message)
        except EnqueueError as e:
            logger.error(f"[{resource_id}] {e}")
            await self.registry.mark_status(resource_id, ResourceStatus.FAILED, error=str(e))
            raise

        await self.registry.record_details(resource_id, QueueDetails(message_id=message_id))
        logger.info(f"[{resource_id}] Queued as message {message_id}")
        return Ack(resource_id=resource_id, status=resource.status, message_id=message_id)


def get_ingestion_gateway() -> IngestionGateway:
    """Get ingestion gateway instance."""
    return IngestionGateway(
        registry=get_resource_registry(),
        queue=get_queue_client(),
    )
