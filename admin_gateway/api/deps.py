from typing import Optional

from fastapi import Request

from admin_gateway.core.request_context import get_client_ip, state_identity
from admin_gateway.pipeline import Pipeline
from admin_gateway.schemas.identity import Identity
from admin_gateway.services.rate_limiter import RateLimiter, RatePolicy, describe_window
from admin_gateway.services.response_cache import ResponseCache
from admin_gateway.services.security_gate import SecurityGate


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_response_cache(request: Request) -> ResponseCache:
    return get_pipeline(request).cache


def get_rate_limiter(request: Request) -> RateLimiter:
    return get_pipeline(request).rate_limiter


def get_security_gate(request: Request) -> SecurityGate:
    return get_pipeline(request).security


def get_identity(request: Request) -> Optional[Identity]:
    return state_identity(request)


class RouteRateLimit:
    """
    Extra per-route budget, on top of the category limits.

    Usage:
        @router.post("/export", dependencies=[Depends(RouteRateLimit("export", 5, 3600))])
    """

    def __init__(self, name: str, max_requests: int, window_seconds: float, message: Optional[str] = None):
        self.category = f"route:{name}"
        self.policy = RatePolicy(
            max_requests=max_requests,
            window_seconds=window_seconds,
            error_code="RATE_LIMIT_EXCEEDED",
            message=message or "Too many requests. Please try again later.",
            retry_after=describe_window(window_seconds),
        )

    async def __call__(self, request: Request):
        limiter = get_rate_limiter(request)
        limiter.ensure_policy(self.category, self.policy)
        client_ip = get_client_ip(request)
        identity = get_identity(request)
        if identity is not None and identity.is_elevated:
            return
        decision = limiter.admit(self.category, limiter.client_key(self.category, client_ip, identity), client_ip)
        if not decision.allowed:
            raise decision.to_exception()
