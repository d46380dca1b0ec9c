"""Authentication and authorization module."""

from .dependencies import (
    get_tenant_context,
    verify_admin_token,
    TenantContext,
)

__all__ = [
    "get_tenant_context",
    "verify_admin_token",
    "TenantContext",
]
