"""Resource API endpoints."""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from sitekb.core.errors import EnqueueError, ReindexRejected, ResourceNotFound
from sitekb.features.auth import TenantContext, get_tenant_context

from .models import (
    Ack,
    ResourceKind,
    ResourceListResponse,
    ResourceResponse,
    ResourceStatusResponse,
    WebsiteCreate,
)
from .registry import ResourceRegistry, get_resource_registry
from .service import ResourceService, get_resource_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants/{tenant_id}/resources", tags=["resources"])

# Accepted upload types per resource kind
UPLOAD_TYPES = {
    ResourceKind.RAW_HTML: {"text/html", "application/xhtml+xml"},
    ResourceKind.SCREENSHOT: {"image/png", "image/jpeg", "image/webp"},
}

# Max upload size (5MB)
MAX_UPLOAD_SIZE = 5 * 1024 * 1024


@router.post("", response_model=ResourceResponse, status_code=status.HTTP_201_CREATED)
async def add_website(
    data: WebsiteCreate,
    tenant: TenantContext = Depends(get_tenant_context),
    service: ResourceService = Depends(get_resource_service),
):
    """Add a website and queue its crawl."""
    try:
        resource = await service.add_website(tenant.tenant_id, data.url, tenant.user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EnqueueError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return ResourceResponse.from_resource(resource)


@router.post("/upload", response_model=ResourceResponse, status_code=status.HTTP_201_CREATED)
async def upload_resource(
    kind: ResourceKind = Form(...),
    file: UploadFile = File(...),
    tenant: TenantContext = Depends(get_tenant_context),
    service: ResourceService = Depends(get_resource_service),
):
    """
    Upload a raw HTML page or a screenshot.

    Max size: 5MB
    """
    allowed = UPLOAD_TYPES.get(kind)
    if allowed is None:
        raise HTTPException(status_code=400, detail=f"Cannot upload resources of kind {kind.value}")
    if file.content_type not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}. Supported: {sorted(allowed)}",
        )

    content = await file.read()
    if len(content) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size: {MAX_UPLOAD_SIZE / 1024 / 1024}MB",
        )

    resource = await service.upload_file(
        tenant_id=tenant.tenant_id,
        kind=kind,
        file_content=content,
        filename=file.filename or "untitled",
        content_type=file.content_type,
        user_id=tenant.user_id,
    )
    return ResourceResponse.from_resource(resource)


@router.get("", response_model=ResourceListResponse)
async def list_resources(
    tenant: TenantContext = Depends(get_tenant_context),
    registry: ResourceRegistry = Depends(get_resource_registry),
):
    """List the tenant's resources, newest first."""
    resources = await registry.list_resources(tenant.tenant_id)
    return ResourceListResponse(
        resources=[ResourceResponse.from_resource(r) for r in resources],
        total=len(resources),
    )


@router.get("/{resource_id}", response_model=ResourceResponse)
async def get_resource(
    resource_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    registry: ResourceRegistry = Depends(get_resource_registry),
):
    """Get resource by ID."""
    try:
        resource = await registry.get_resource(resource_id, tenant.tenant_id)
    except ResourceNotFound:
        raise HTTPException(status_code=404, detail="Resource not found")

    return ResourceResponse.from_resource(resource)


@router.get("/{resource_id}/status", response_model=ResourceStatusResponse)
async def get_resource_status(
    resource_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    registry: ResourceRegistry = Depends(get_resource_registry),
):
    """Poll a resource's ingestion status."""
    try:
        resource = await registry.get_resource(resource_id, tenant.tenant_id)
    except ResourceNotFound:
        raise HTTPException(status_code=404, detail="Resource not found")

    return ResourceStatusResponse(
        id=resource.id,
        status=resource.status,
        error=resource.error,
        pages_crawled=resource.pages_crawled,
        status_changed_at=resource.status_changed_at,
    )


@router.post("/{resource_id}/reindex", response_model=Ack, status_code=status.HTTP_202_ACCEPTED)
async def reindex_resource(
    resource_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: ResourceService = Depends(get_resource_service),
):
    """Queue a new crawl of a website. Rejected while one is in flight."""
    try:
        return await service.reindex(tenant.tenant_id, resource_id)
    except ResourceNotFound:
        raise HTTPException(status_code=404, detail="Resource not found")
    except ReindexRejected as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EnqueueError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.delete("/{resource_id}")
async def delete_resource(
    resource_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    registry: ResourceRegistry = Depends(get_resource_registry),
):
    """Delete a resource, its site index and any stored file."""
    try:
        await registry.delete_resource(resource_id, tenant.tenant_id)
    except ResourceNotFound:
        raise HTTPException(status_code=404, detail="Resource not found")

    return {"message": "Resource deleted successfully"}
