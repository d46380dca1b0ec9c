"""Pub/Sub client wrapper for the ingestion queue."""

import asyncio
import json
import logging
from typing import Any

from google.cloud import pubsub_v1

from sitekb.config import get_settings

logger = logging.getLogger(__name__)

PUBLISH_TIMEOUT_SECONDS = 30.0


class QueueClient:
    """Wrapper for publishing ingestion messages to a Pub/Sub topic."""

    _instance: "QueueClient | None" = None
    _publisher: pubsub_v1.PublisherClient | None = None

    def __new__(cls) -> "QueueClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def publisher(self) -> pubsub_v1.PublisherClient:
        """Get or create publisher with message ordering enabled."""
        if self._publisher is None:
            self._publisher = pubsub_v1.PublisherClient(
                publisher_options=pubsub_v1.types.PublisherOptions(
                    enable_message_ordering=True,
                ),
            )
        return self._publisher

    @property
    def topic_path(self) -> str:
        """Full topic path, or empty string when no topic is configured."""
        settings = get_settings()
        if not settings.pubsub_topic:
            return ""
        if settings.pubsub_topic.startswith("projects/"):
            return settings.pubsub_topic
        return self.publisher.topic_path(
            settings.google_cloud_project, settings.pubsub_topic
        )

    async def send(self, message: dict[str, Any], ordering_key: str = "") -> str:
        """
        Publish a JSON message and wait for the server to accept it.

        Returns:
            Pub/Sub message ID
        """
        topic = self.topic_path
        if not topic:
            raise RuntimeError("Pub/Sub topic is not configured")

        data = json.dumps(message).encode("utf-8")
        try:
            future = self.publisher.publish(topic, data, ordering_key=ordering_key)
            return await asyncio.to_thread(future.result, timeout=PUBLISH_TIMEOUT_SECONDS)
        except Exception:
            if ordering_key:
                # A failed publish pauses its ordering key until resumed
                self.publisher.resume_publish(topic, ordering_key)
                logger.info(f"Resumed ordering key {ordering_key} after failed publish")
            raise

    async def ping(self) -> bool:
        """Check that the configured topic exists and is reachable."""
        topic = self.topic_path
        if not topic:
            logger.error("Pub/Sub topic is not configured")
            return False
        await asyncio.to_thread(self.publisher.get_topic, request={"topic": topic})
        return True


def get_queue_client() -> QueueClient:
    """Get queue client instance (dependency injection)."""
    return QueueClient()
