"""Rate limiting configuration for API endpoints."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def get_rate_limit_key(request: Request) -> str:
    """Get composite key: tenant_id + IP for tenant endpoints, IP otherwise."""
    ip = get_remote_address(request)

    path = request.url.path
    if "/tenants/" in path:
        parts = path.split("/tenants/")
        if len(parts) > 1:
            tenant_id = parts[1].split("/")[0]
            return f"tenant:{tenant_id}:{ip}"

    return ip


limiter = Limiter(key_func=get_rate_limit_key)
