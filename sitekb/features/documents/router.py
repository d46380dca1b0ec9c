"""Document API endpoints."""

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from sitekb.core.errors import EnqueueError, ResourceNotFound
from sitekb.features.auth import TenantContext, get_tenant_context

from .models import (
    SUPPORTED_TYPES,
    DocumentListResponse,
    DocumentResponse,
    DocumentStatusResponse,
    DocumentUploadResponse,
)
from .service import DocumentService, get_document_service

router = APIRouter(prefix="/api/tenants/{tenant_id}/documents", tags=["documents"])

# Max file size (10MB)
MAX_FILE_SIZE = 10 * 1024 * 1024


@router.post("", response_model=DocumentUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    tenant: TenantContext = Depends(get_tenant_context),
    service: DocumentService = Depends(get_document_service),
):
    """
    Upload a document for text extraction.

    Supported formats: PDF, DOCX, TXT, MD, CSV, HTML
    Max size: 10MB
    """
    # Validate content type
    if file.content_type not in SUPPORTED_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}. Supported: {list(SUPPORTED_TYPES.keys())}",
        )

    # Read file content
    content = await file.read()

    # Validate file size
    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size: {MAX_FILE_SIZE / 1024 / 1024}MB",
        )

    try:
        doc = await service.upload_document(
            tenant_id=tenant.tenant_id,
            file_content=content,
            filename=file.filename or "untitled",
            content_type=file.content_type,
            user_id=tenant.user_id,
        )
    except EnqueueError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return DocumentUploadResponse(
        id=doc.id,
        filename=doc.filename,
        status=doc.processing_status,
        message="Document uploaded and queued for processing",
    )


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    tenant: TenantContext = Depends(get_tenant_context),
    service: DocumentService = Depends(get_document_service),
):
    """List all uploaded documents."""
    docs = await service.list_documents(tenant.tenant_id)

    return DocumentListResponse(
        documents=[DocumentResponse.from_document(doc) for doc in docs],
        total=len(docs),
    )


@router.get("/{doc_id}", response_model=DocumentResponse)
async def get_document(
    doc_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: DocumentService = Depends(get_document_service),
):
    """Get document by ID."""
    try:
        doc = await service.get_document(doc_id, tenant.tenant_id)
    except ResourceNotFound:
        raise HTTPException(status_code=404, detail="Document not found")

    return DocumentResponse.from_document(doc)


@router.get("/{doc_id}/status", response_model=DocumentStatusResponse)
async def get_document_status(
    doc_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: DocumentService = Depends(get_document_service),
):
    """Poll a document's processing status."""
    try:
        doc = await service.get_document(doc_id, tenant.tenant_id)
    except ResourceNotFound:
        raise HTTPException(status_code=404, detail="Document not found")

    return DocumentStatusResponse(
        id=doc.id,
        status=doc.processing_status,
        error=doc.processing_error,
        text_length=len(doc.extracted_text or ""),
    )


@router.delete("/{doc_id}")
async def delete_document(
    doc_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: DocumentService = Depends(get_document_service),
):
    """Delete a document and its stored file."""
    try:
        await service.delete_document(doc_id, tenant.tenant_id)
    except ResourceNotFound:
        raise HTTPException(status_code=404, detail="Document not found")

    return {"message": "Document deleted successfully"}
