"""Resource data models and the ingestion status machine."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from sitekb.core.errors import InvalidStatusTransition


class ResourceKind(str, Enum):
    """What a tenant added to their knowledge base."""
    WEBSITE_URL = "website-url"
    UPLOADED_FILE = "uploaded-file"
    RAW_HTML = "raw-html"
    SCREENSHOT = "screenshot"


class ResourceStatus(str, Enum):
    """Ingestion status shared by resources and documents."""
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    CRAWLING = "crawling"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "ResourceStatus":
        """Stored status, with unrecognized values read as UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


IN_FLIGHT = frozenset({ResourceStatus.QUEUED, ResourceStatus.PROCESSING, ResourceStatus.CRAWLING})

# Statuses a worker may move to CRAWLING
CRAWL_CLAIMABLE = frozenset({ResourceStatus.QUEUED, ResourceStatus.PROCESSING})

# Forward moves of a single ingestion attempt. Leaving a terminal state
# back to QUEUED only happens through a re-index request.
TRANSITIONS: dict[ResourceStatus, frozenset[ResourceStatus]] = {
    ResourceStatus.PENDING: frozenset({
        ResourceStatus.QUEUED, ResourceStatus.PROCESSING,
        ResourceStatus.COMPLETED, ResourceStatus.FAILED, ResourceStatus.UNKNOWN,
    }),
    ResourceStatus.QUEUED: frozenset({
        ResourceStatus.PROCESSING, ResourceStatus.CRAWLING,
        ResourceStatus.FAILED, ResourceStatus.UNKNOWN,
    }),
    ResourceStatus.PROCESSING: frozenset({
        ResourceStatus.CRAWLING, ResourceStatus.COMPLETED,
        ResourceStatus.FAILED, ResourceStatus.UNKNOWN,
    }),
    ResourceStatus.CRAWLING: frozenset({
        ResourceStatus.COMPLETED, ResourceStatus.FAILED, ResourceStatus.UNKNOWN,
    }),
    ResourceStatus.COMPLETED: frozenset(),
    ResourceStatus.FAILED: frozenset(),
    ResourceStatus.UNKNOWN: frozenset({ResourceStatus.FAILED}),
}

REINDEXABLE = frozenset({
    ResourceStatus.PENDING, ResourceStatus.COMPLETED,
    ResourceStatus.FAILED, ResourceStatus.UNKNOWN,
})


def check_transition(current: ResourceStatus, requested: ResourceStatus) -> None:
    """Raise InvalidStatusTransition unless ``current -> requested`` is allowed."""
    if requested not in TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, requested.value)


# Source: what the resource points at
class WebsiteSource(BaseModel):
    kind: Literal["website-url"] = "website-url"
    url: str

    @field_validator("url")
    @classmethod
    def strip_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url must not be empty")
        return v


class FileSource(BaseModel):
    kind: Literal["uploaded-file", "raw-html", "screenshot"]
    storage_path: str
    filename: str
    content_type: str


class OpaqueSource(BaseModel):
    """Source written by a newer version, kept as-is."""
    kind: Literal["unknown"] = "unknown"
    data: dict[str, Any] = Field(default_factory=dict)


ResourceSource = Annotated[
    Union[WebsiteSource, FileSource, OpaqueSource],
    Field(discriminator="kind"),
]


# Details attached to a status report
class CrawlDetails(BaseModel):
    kind: Literal["crawl"] = "crawl"
    site_index_id: str
    pages_crawled: int
    content_size: int
    keywords: list[str] = Field(default_factory=list)


class ExtractionDetails(BaseModel):
    kind: Literal["extraction"] = "extraction"
    content_size: int
    keywords: list[str] = Field(default_factory=list)


class QueueDetails(BaseModel):
    kind: Literal["queue"] = "queue"
    message_id: str


class OpaqueDetails(BaseModel):
    kind: Literal["opaque"] = "opaque"
    data: dict[str, Any] = Field(default_factory=dict)


StatusDetails = Annotated[
    Union[CrawlDetails, ExtractionDetails, QueueDetails, OpaqueDetails],
    Field(discriminator="kind"),
]


class Resource(BaseModel):
    """A tenant-owned knowledge base resource."""
    id: str
    tenant_id: str
    kind: ResourceKind
    source: ResourceSource
    status: ResourceStatus
    error: str | None = None
    pages_crawled: int = 0
    content_size: int = 0
    keywords: list[str] = Field(default_factory=list)
    site_index_id: str | None = None
    last_message_id: str | None = None
    extracted_text: str | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime
    status_changed_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def read_status(cls, v: Any) -> ResourceStatus:
        return v if isinstance(v, ResourceStatus) else ResourceStatus.parse(v)

    @field_validator("source", mode="before")
    @classmethod
    def read_source(cls, v: Any) -> Any:
        if isinstance(v, dict) and v.get("kind") not in (
            "website-url", "uploaded-file", "raw-html", "screenshot", "unknown",
        ):
            return {"kind": "unknown", "data": v}
        return v

    @property
    def url(self) -> str | None:
        return self.source.url if isinstance(self.source, WebsiteSource) else None

    @property
    def storage_path(self) -> str | None:
        return self.source.storage_path if isinstance(self.source, FileSource) else None


class WebsiteCreate(BaseModel):
    """Request to add a website to the knowledge base."""
    url: str = Field(..., min_length=1, max_length=2048)


class ResourceResponse(BaseModel):
    """Resource as returned by the API."""
    id: str
    kind: ResourceKind
    status: ResourceStatus
    url: str | None = None
    filename: str | None = None
    error: str | None = None
    pages_crawled: int = 0
    content_size: int = 0
    keywords: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceResponse":
        filename = resource.source.filename if isinstance(resource.source, FileSource) else None
        return cls(
            id=resource.id,
            kind=resource.kind,
            status=resource.status,
            url=resource.url,
            filename=filename,
            error=resource.error,
            pages_crawled=resource.pages_crawled,
            content_size=resource.content_size,
            keywords=resource.keywords,
            created_at=resource.created_at,
            updated_at=resource.updated_at,
        )


class ResourceListResponse(BaseModel):
    """List of resources."""
    resources: list[ResourceResponse]
    total: int


class ResourceStatusResponse(BaseModel):
    """Lightweight status poll response."""
    id: str
    status: ResourceStatus
    error: str | None = None
    pages_crawled: int = 0
    status_changed_at: datetime


class Ack(BaseModel):
    """Acknowledgement of an accepted ingestion request."""
    resource_id: str
    status: ResourceStatus
    message_id: str | None = None
