"""Error taxonomy for the ingestion and retrieval pipeline."""


class SiteKBError(Exception):
    """Base class for all pipeline errors."""


class FetchError(SiteKBError):
    """A page could not be fetched."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class TransientFetchError(FetchError):
    """Network failure, timeout, rate limit or server error. Retried by the Fetcher."""


class PermanentFetchError(FetchError):
    """Malformed URL or a 4xx response other than rate limiting. Never retried."""


class EnqueueError(SiteKBError):
    """A resource could not be handed off to the ingestion queue."""


class ExtractionError(SiteKBError):
    """Text could not be extracted from an uploaded file."""


class GenerationError(SiteKBError):
    """The text-generation collaborator failed to produce a reply."""


class ResourceNotFound(SiteKBError):
    """No resource or document exists with the given id for this tenant."""


class InvalidStatusTransition(SiteKBError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move from '{current}' to '{requested}'")


class ReindexRejected(SiteKBError):
    """A crawl is already queued or running for this resource."""

    def __init__(self, resource_id: str, status: str):
        self.resource_id = resource_id
        self.status = status
        super().__init__(f"Resource {resource_id} is already {status}")


class MaintenanceBusy(SiteKBError):
    """Another maintenance run holds the maintenance lock."""
