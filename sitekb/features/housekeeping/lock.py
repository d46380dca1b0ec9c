"""Durable single-holder lock stored in Firestore."""

import logging
import uuid
from datetime import timedelta
from typing import Any

from sitekb.core.firestore import SYSTEM_STATE, FirestoreClient, utcnow

logger = logging.getLogger(__name__)


class MaintenanceLock:
    """
    A named lock record in ``system_state``.

    Acquisition is a conditional write, so only one process across all
    instances holds it. A lock older than ``ttl`` is considered abandoned
    and may be taken over.
    """

    def __init__(
        self,
        firestore: FirestoreClient,
        name: str = "maintenance",
        ttl: timedelta = timedelta(hours=1),
    ):
        self.firestore = firestore
        self.name = name
        self.ttl = ttl
        self.owner = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Take the lock. Returns False if someone else holds it."""
        acquired = False

        def decide(current: dict[str, Any] | None) -> dict[str, Any] | None:
            nonlocal acquired
            now = utcnow()
            if current and current.get("running") and current.get("expires_at") > now:
                acquired = False
                return None
            acquired = True
            return {
                "running": True,
                "owner": self.owner,
                "started_at": now,
                "expires_at": now + self.ttl,
            }

        await self.firestore.compare_and_set(SYSTEM_STATE, self.name, decide)
        if acquired:
            logger.info(f"Acquired {self.name} lock as {self.owner}")
        return acquired

    async def release(self) -> None:
        def decide(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if not current or current.get("owner") != self.owner:
                return None
            return {"running": False, "finished_at": utcnow()}

        await self.firestore.compare_and_set(SYSTEM_STATE, self.name, decide)
        logger.info(f"Released {self.name} lock")
