"""
Composition of the request pipeline.

Each store is constructed once at startup and injected into its middleware.
Requests pass SecurityMiddleware, then RateLimitMiddleware, then
CacheMiddleware before reaching the route handler.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from fastapi import FastAPI

from admin_gateway.core.config import Settings, get_security_config, settings as default_settings, split_csv
from admin_gateway.core.logging import get_logger
from admin_gateway.core.request_context import IdentityResolver
from admin_gateway.middleware.cache import CacheMiddleware, CacheRule, default_cache_rules
from admin_gateway.middleware.rate_limiter import RateLimitMiddleware
from admin_gateway.middleware.security import SecurityMiddleware
from admin_gateway.services.rate_limiter import DEFAULT_POLICIES, RateLimiter, apply_overrides
from admin_gateway.services.response_cache import ResponseCache
from admin_gateway.services.security_gate import AuditSink, CSRFTokenStore, SecurityGate

logger = get_logger("pipeline")


@dataclass
class Pipeline:
    cache: ResponseCache
    rate_limiter: RateLimiter
    security: SecurityGate
    cache_rules: List[CacheRule] = field(default_factory=list)
    rate_limit_enabled: bool = True

    def clear(self):
        """Reset every store; used between tests and on shutdown."""
        self.cache.clear()
        self.rate_limiter.clear()
        self.security.clear()

    def shutdown(self):
        self.clear()
        logger.info("Request pipeline stores cleared")


def build_pipeline(
    current: Optional[Settings] = None,
    clock: Optional[Callable[[], float]] = None,
    audit_sink: Optional[AuditSink] = None,
    cache_rules: Optional[List[CacheRule]] = None,
) -> Pipeline:
    current = current or default_settings
    security_config = get_security_config(current)

    cache = ResponseCache(
        default_ttl=max(current.CACHE_TTL_SECONDS, 1),
        max_entries=current.CACHE_MAX_ENTRIES,
        clock=clock,
    )
    rate_limiter = RateLimiter(
        policies=apply_overrides(DEFAULT_POLICIES, current.rate_limit_policies),
        whitelisted_ips=split_csv(current.WHITELISTED_IPS),
        blacklisted_ips=split_csv(current.BLACKLISTED_IPS),
        blacklist_max_requests=current.BLACKLIST_MAX_REQUESTS,
        max_keys=current.RATE_LIMIT_MAX_KEYS,
        clock=clock,
    )
    security = SecurityGate(
        security_config,
        token_store=CSRFTokenStore(
            ttl_seconds=current.CSRF_TOKEN_TTL_SECONDS,
            max_sessions=current.CSRF_MAX_SESSIONS,
            clock=clock,
        ),
        audit_sink=audit_sink,
    )
    if cache_rules is None:
        cache_rules = default_cache_rules(current.API_V1_STR, current.CACHE_TTL_SECONDS)

    return Pipeline(
        cache=cache,
        rate_limiter=rate_limiter,
        security=security,
        cache_rules=cache_rules,
        rate_limit_enabled=current.RATE_LIMIT_ENABLED,
    )


def install_pipeline(app: FastAPI, pipeline: Pipeline, identity_resolver: Optional[IdentityResolver] = None):
    """Attach the pipeline to app.state and register its middleware."""
    app.state.pipeline = pipeline

    # Starlette runs the last added middleware first
    app.add_middleware(CacheMiddleware, cache=pipeline.cache, rules=pipeline.cache_rules)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=pipeline.rate_limiter,
        identity_resolver=identity_resolver,
        enabled=pipeline.rate_limit_enabled,
    )
    app.add_middleware(SecurityMiddleware, gate=pipeline.security, identity_resolver=identity_resolver)
