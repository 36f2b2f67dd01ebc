from typing import Optional

from fastapi import APIRouter, Depends, Request

from admin_gateway.api.deps import get_identity, get_rate_limiter
from admin_gateway.core.error_handlers import create_success_response
from admin_gateway.core.request_context import get_client_ip
from admin_gateway.schemas.identity import Identity
from admin_gateway.services.rate_limiter import RateLimiter

router = APIRouter()


@router.get("/rate-limit-status")
async def rate_limit_status(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
    identity: Optional[Identity] = Depends(get_identity),
):
    """Current budgets for the caller across every rate limit category."""
    client_ip = get_client_ip(request)
    return create_success_response({
        "limits": limiter.status(client_ip, identity),
        "ip": client_ip,
        "authenticated": identity is not None,
        "userRole": identity.role if identity and identity.role else "anonymous",
    })
