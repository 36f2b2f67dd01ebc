from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from admin_gateway.core.error_handlers import ErrorHandler
from admin_gateway.core.logging import get_logger
from admin_gateway.core.request_context import IdentityResolver, get_client_ip, state_identity
from admin_gateway.services.rate_limiter import RateLimiter

logger = get_logger("middleware.rate_limiter")

EXEMPT_PREFIXES = ("/docs", "/redoc", "/openapi.json")


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        limiter: RateLimiter,
        identity_resolver: Optional[IdentityResolver] = None,
        enabled: bool = True,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.identity_resolver = identity_resolver or state_identity
        self.enabled = enabled
        logger.info(f"Rate limit middleware initialized (enabled={enabled})")

    async def dispatch(self, request: Request, call_next):
        if not self.enabled or request.url.path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        try:
            decision = self.limiter.check(
                request.method,
                request.url.path,
                get_client_ip(request),
                request.query_params,
                self.identity_resolver(request),
            )
        except Exception:
            # Fail closed: a broken limiter never lets the request through
            logger.exception(f"Rate limiter failed for {request.method} {request.url.path}")
            return ErrorHandler.internal_error()

        if decision is None:
            return await call_next(request)

        if not decision.allowed:
            return ErrorHandler.from_exception(decision.to_exception())

        response = await call_next(request)
        self.limiter.record_outcome(decision, response.status_code)
        # A tighter route-level budget keeps its own headers
        for name, value in decision.headers().items():
            response.headers.setdefault(name, value)
        return response
