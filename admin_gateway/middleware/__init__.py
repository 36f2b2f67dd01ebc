from admin_gateway.middleware.cache import CacheMiddleware, CacheRule, default_cache_rules
from admin_gateway.middleware.rate_limiter import RateLimitMiddleware
from admin_gateway.middleware.security import SecurityMiddleware

__all__ = ["CacheMiddleware", "CacheRule", "default_cache_rules", "RateLimitMiddleware", "SecurityMiddleware"]
