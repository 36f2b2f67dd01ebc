from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from fastapi import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from admin_gateway.core.logging import get_logger
from admin_gateway.services.response_cache import ResponseCache, derive_key, serialize_query

logger = get_logger("middleware.cache")

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


@dataclass
class CachedResponse:
    body: bytes
    status_code: int
    headers: List[Tuple[str, str]]
    media_type: Optional[str] = None


@dataclass
class CacheRule:
    """Caching policy for every GET under a path prefix."""

    prefix: str
    ttl_seconds: float
    key_generator: Optional[Callable[[Request], str]] = None
    condition: Callable[[Request], bool] = field(default=lambda request: True)
    # Regex invalidated after a successful write under the prefix
    invalidates: Optional[str] = None

    def matches(self, path: str) -> bool:
        prefix = self.prefix.rstrip("/")
        return path == prefix or path.startswith(prefix + "/")

    def key_for(self, request: Request) -> str:
        if self.key_generator is not None:
            return self.key_generator(request)
        return derive_key(request.url.path, request.query_params.multi_items())


def supplier_cache_key(request: Request) -> str:
    return f"suppliers:{request.url.path}:{serialize_query(request.query_params.multi_items())}"


def is_realtime_request(request: Request) -> bool:
    return request.query_params.get("realtime", "").lower() in ("1", "true", "yes")


def default_cache_rules(api_prefix: str = "/api/v1", default_ttl: float = 300) -> List[CacheRule]:
    """Cache policies for the dashboard endpoints."""
    if default_ttl <= 0:
        return []
    return [
        CacheRule(
            prefix=f"{api_prefix}/dashboard",
            ttl_seconds=120,
            condition=lambda request: not is_realtime_request(request),
        ),
        CacheRule(
            prefix=f"{api_prefix}/suppliers",
            ttl_seconds=default_ttl,
            key_generator=supplier_cache_key,
            invalidates="^suppliers:",
        ),
        CacheRule(prefix="/health", ttl_seconds=30),
        CacheRule(prefix=f"{api_prefix}/monitoring/metrics", ttl_seconds=60),
    ]


class CacheMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, cache: ResponseCache, rules: Optional[List[CacheRule]] = None):
        super().__init__(app)
        self.cache = cache
        self.rules = list(rules or [])
        logger.info(f"Cache middleware initialized with {len(self.rules)} rules")

    def _match_rule(self, path: str) -> Optional[CacheRule]:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    def _is_cacheable(self, request: Request, rule: CacheRule) -> bool:
        if request.method != "GET" or rule.ttl_seconds <= 0:
            return False
        # Per-user responses are never shared through the cache
        if "authorization" in request.headers:
            return False
        return rule.condition(request)

    @staticmethod
    def _build_response(cached: CachedResponse, status: str, key: str, rule: CacheRule) -> Response:
        response = Response(
            content=cached.body,
            status_code=cached.status_code,
            headers=dict(cached.headers),
            media_type=cached.media_type,
        )
        response.headers["X-Cache"] = status
        response.headers["X-Cache-Key"] = key
        response.headers["X-Cache-TTL"] = str(int(rule.ttl_seconds))
        return response

    async def dispatch(self, request: Request, call_next):
        rule = self._match_rule(request.url.path)
        if rule is None:
            return await call_next(request)

        if request.method in MUTATING_METHODS:
            response = await call_next(request)
            if rule.invalidates and 200 <= response.status_code < 300:
                removed = self.cache.invalidate(rule.invalidates)
                logger.debug(f"{request.method} {request.url.path} invalidated {removed} entries")
            return response

        if not self._is_cacheable(request, rule):
            return await call_next(request)

        cache_key = rule.key_for(request)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {request.url.path}")
            return self._build_response(cached, "HIT", cache_key, rule)

        response = await call_next(request)
        if not 200 <= response.status_code < 300 or "set-cookie" in response.headers:
            return response

        # Only a fully read body is stored; a failed stream raises before set()
        body = b""
        async for chunk in response.body_iterator:
            body += chunk

        cached = CachedResponse(
            body=body,
            status_code=response.status_code,
            headers=[(k, v) for k, v in response.headers.items() if k != "content-length"],
            media_type=response.media_type,
        )
        self.cache.set(cache_key, cached, rule.ttl_seconds)
        logger.debug(f"Cache miss for {request.url.path}, stored under {cache_key}")
        return self._build_response(cached, "MISS", cache_key, rule)
