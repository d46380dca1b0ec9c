"""Chat API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from sitekb.config import get_settings
from sitekb.core.errors import GenerationError
from sitekb.core.rate_limiter import limiter
from sitekb.features.auth import TenantContext, get_tenant_context

from .models import ChatRequest, ChatResponse
from .service import ChatService, get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants/{tenant_id}/chat", tags=["chat"])


@router.post("", response_model=ChatResponse)
@limiter.limit(lambda: get_settings().chat_rate_limit)
async def chat(
    request: Request,
    body: ChatRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    service: ChatService = Depends(get_chat_service),
):
    """
    Send a message and get a response.

    Retrieves context from the tenant's crawled websites and documents.
    Maintains conversation history via session_id.
    """
    try:
        return await service.chat(
            tenant_id=tenant.tenant_id,
            message=body.message,
            session_id=body.session_id,
            system_prompt=body.system_prompt,
            model_id=body.model_id,
        )
    except GenerationError as e:
        logger.error(f"Chat generation failed for tenant {tenant.tenant_id}: {e}")
        raise HTTPException(
            status_code=502,
            detail="Failed to generate a response. Please try again.",
        )
