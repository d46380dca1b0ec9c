"""FastAPI authentication dependencies."""

from typing import Optional

from fastapi import Header, HTTPException, Path, status

from sitekb.config import get_settings


class TenantContext:
    """
    Identity of the caller, established by the upstream gateway.

    The gateway authenticates the user and forwards the tenant and user ids
    as headers. Requests for a tenant other than the forwarded one are
    rejected.
    """

    def __init__(self, tenant_id: str, user_id: Optional[str] = None):
        self.tenant_id = tenant_id
        self.user_id = user_id


async def get_tenant_context(
    tenant_id: str = Path(..., min_length=1),
    x_tenant_id: str = Header(..., description="Tenant forwarded by the gateway"),
    x_user_id: Optional[str] = Header(None, description="User forwarded by the gateway"),
) -> TenantContext:
    """Validate the forwarded tenant against the path and return the context."""
    if x_tenant_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access this tenant",
        )

    return TenantContext(tenant_id=tenant_id, user_id=x_user_id)


async def verify_admin_token(
    x_admin_token: str = Header(..., description="Admin API token"),
) -> bool:
    """
    Verify admin access token.

    Used for housekeeping endpoints triggered by the scheduler.
    """
    settings = get_settings()

    if not settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin authentication not configured",
        )

    if x_admin_token != settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )

    return True
