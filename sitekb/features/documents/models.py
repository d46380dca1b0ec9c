"""Pydantic models for documents feature."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sitekb.features.resources.models import ResourceStatus

# Supported content types
SUPPORTED_TYPES = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
    "text/markdown": "md",
    "text/csv": "csv",
    "text/html": "html",
}

# Documents skip the queued and crawling states
DOCUMENT_TRANSITIONS: dict[ResourceStatus, frozenset[ResourceStatus]] = {
    ResourceStatus.PENDING: frozenset({ResourceStatus.PROCESSING, ResourceStatus.FAILED}),
    ResourceStatus.PROCESSING: frozenset({ResourceStatus.COMPLETED, ResourceStatus.FAILED}),
    ResourceStatus.COMPLETED: frozenset(),
    ResourceStatus.FAILED: frozenset(),
    ResourceStatus.UNKNOWN: frozenset({ResourceStatus.FAILED}),
}


class Document(BaseModel):
    """Stored document record."""

    id: str
    tenant_id: str
    filename: str
    content_type: str
    file_size: int
    storage_path: str
    extracted_text: str | None = None
    processing_status: ResourceStatus
    processing_error: str | None = None
    embedding: list[float] | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("processing_status", mode="before")
    @classmethod
    def read_status(cls, v: Any) -> ResourceStatus:
        return v if isinstance(v, ResourceStatus) else ResourceStatus.parse(v)


class DocumentResponse(BaseModel):
    """Document response model."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    filename: str
    content_type: str
    file_size: int
    status: ResourceStatus
    error: str | None = None
    text_length: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentResponse":
        return cls(
            id=doc.id,
            filename=doc.filename,
            content_type=doc.content_type,
            file_size=doc.file_size,
            status=doc.processing_status,
            error=doc.processing_error,
            text_length=len(doc.extracted_text or ""),
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )


class DocumentListResponse(BaseModel):
    """List of documents response."""

    documents: list[DocumentResponse]
    total: int


class DocumentUploadResponse(BaseModel):
    """Document upload response."""

    id: str
    filename: str
    status: ResourceStatus
    message: str


class DocumentStatusResponse(BaseModel):
    """Document processing status."""

    id: str
    status: ResourceStatus
    error: str | None = None
    text_length: int = Field(default=0, ge=0)
