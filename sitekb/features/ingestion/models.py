"""Ingestion queue message models."""

import base64
import json
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class IngestionTarget(str, Enum):
    """What the worker should process."""
    RESOURCE = "resource"
    DOCUMENT = "document"


class IngestionMessage(BaseModel):
    """Body of a message published to the ingestion topic."""
    target: IngestionTarget
    id: str
    tenant_id: str
    kind: str
    url: str | None = None
    storage_path: str | None = None
    timestamp: datetime


class PushMessage(BaseModel):
    """The ``message`` object of a Pub/Sub push request."""
    model_config = ConfigDict(populate_by_name=True)

    data: str
    message_id: str | None = Field(default=None, alias="messageId")
    attributes: dict[str, str] = Field(default_factory=dict)

    def decode(self) -> IngestionMessage:
        """Decode the base64 JSON payload."""
        payload = json.loads(base64.b64decode(self.data).decode("utf-8"))
        return IngestionMessage.model_validate(payload)


class PushEnvelope(BaseModel):
    """Pub/Sub push request body."""
    message: PushMessage
    subscription: str | None = None
