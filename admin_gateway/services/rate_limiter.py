"""
Category-aware rate limiting.

Each request is classified into a category (auth, upload, search, ...) and
counted against a fixed window budget for that category and client. Windows
live in an in-memory, LRU-bounded map owned by the RateLimiter instance.
"""

import math
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterable, Mapping, Optional

from admin_gateway.core.exceptions import RateLimitExceeded
from admin_gateway.core.logging import get_logger
from admin_gateway.schemas.identity import Identity

logger = get_logger("services.rate_limiter")

MODIFICATION_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class RateCategory(str, Enum):
    AUTH = "auth"
    API = "api"
    UPLOAD = "upload"
    PASSWORD_RESET = "password-reset"
    SEARCH = "search"
    MODIFICATION = "modification"
    GENERAL = "general"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class RatePolicy:
    max_requests: int
    window_seconds: float
    error_code: str
    message: str
    retry_after: str
    # Successful (< 400) responses hand their unit back to the budget
    skip_successful_requests: bool = False


DEFAULT_POLICIES: Dict[str, RatePolicy] = {
    RateCategory.AUTH: RatePolicy(
        max_requests=5,
        window_seconds=15 * 60,
        error_code="AUTH_RATE_LIMIT_EXCEEDED",
        message="Too many authentication attempts. Please try again later.",
        retry_after="15 minutes",
        skip_successful_requests=True,
    ),
    RateCategory.API: RatePolicy(
        max_requests=100,
        window_seconds=15 * 60,
        error_code="API_RATE_LIMIT_EXCEEDED",
        message="Too many API requests. Please try again later.",
        retry_after="15 minutes",
    ),
    RateCategory.UPLOAD: RatePolicy(
        max_requests=10,
        window_seconds=60 * 60,
        error_code="UPLOAD_RATE_LIMIT_EXCEEDED",
        message="Too many file uploads. Please try again later.",
        retry_after="1 hour",
    ),
    RateCategory.PASSWORD_RESET: RatePolicy(
        max_requests=3,
        window_seconds=60 * 60,
        error_code="PASSWORD_RESET_RATE_LIMIT_EXCEEDED",
        message="Too many password reset requests. Please try again later.",
        retry_after="1 hour",
    ),
    RateCategory.SEARCH: RatePolicy(
        max_requests=30,
        window_seconds=60,
        error_code="SEARCH_RATE_LIMIT_EXCEEDED",
        message="Too many search requests. Please slow down.",
        retry_after="1 minute",
    ),
    RateCategory.MODIFICATION: RatePolicy(
        max_requests=20,
        window_seconds=60,
        error_code="MODIFICATION_RATE_LIMIT_EXCEEDED",
        message="Too many modification requests. Please slow down.",
        retry_after="1 minute",
    ),
    RateCategory.GENERAL: RatePolicy(
        max_requests=1000,
        window_seconds=15 * 60,
        error_code="GENERAL_RATE_LIMIT_EXCEEDED",
        message="Too many requests from this IP. Please try again later.",
        retry_after="15 minutes",
    ),
    RateCategory.AUTHENTICATED: RatePolicy(
        max_requests=500,
        window_seconds=15 * 60,
        error_code="AUTHENTICATED_RATE_LIMIT_EXCEEDED",
        message="Too many requests. Please try again later.",
        retry_after="15 minutes",
    ),
}


def describe_window(seconds: float) -> str:
    """Human readable retry hint, e.g. 900 -> "15 minutes"."""
    if seconds % 3600 == 0:
        value, unit = int(seconds // 3600), "hour"
    elif seconds % 60 == 0:
        value, unit = int(seconds // 60), "minute"
    else:
        value, unit = int(math.ceil(seconds)), "second"
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def apply_overrides(policies: Mapping[str, RatePolicy], overrides: Mapping[str, tuple]) -> Dict[str, RatePolicy]:
    """Return a copy of policies with (max, window_seconds) overrides applied."""
    merged = dict(policies)
    for category, (max_requests, window_seconds) in overrides.items():
        if category not in merged:
            raise ValueError(f"Unknown rate limit category: {category}")
        merged[category] = replace(
            merged[category],
            max_requests=max_requests,
            window_seconds=window_seconds,
            retry_after=describe_window(window_seconds),
        )
    return merged


@dataclass
class RateWindow:
    key: str
    window_start: float
    window_seconds: float
    max_requests: int
    count: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_seconds

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_seconds


@dataclass
class RateLimitDecision:
    allowed: bool
    category: str
    key: str
    policy: RatePolicy
    limit: int
    remaining: int
    reset_after: float
    counted: bool = True
    window_start: Optional[float] = None

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.reset_after))

    def headers(self) -> Dict[str, str]:
        """Standard RateLimit-* headers for this decision."""
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(max(0, math.ceil(self.reset_after))),
        }

    def to_exception(self) -> RateLimitExceeded:
        headers = self.headers()
        headers["Retry-After"] = str(self.retry_after_seconds)
        return RateLimitExceeded(
            self.policy.message,
            error_code=self.policy.error_code,
            retry_after=self.policy.retry_after,
            retry_after_seconds=self.retry_after_seconds,
            headers=headers,
        )


class RateLimiter:
    """Fixed window rate limiter with per-category budgets."""

    def __init__(
        self,
        policies: Optional[Mapping[str, RatePolicy]] = None,
        whitelisted_ips: Iterable[str] = (),
        blacklisted_ips: Iterable[str] = (),
        blacklist_max_requests: int = 10,
        max_keys: int = 10000,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_keys <= 0:
            raise ValueError("max_keys must be positive")
        self.policies: Dict[str, RatePolicy] = dict(policies or DEFAULT_POLICIES)
        self.whitelisted_ips = frozenset(whitelisted_ips)
        self.blacklisted_ips = frozenset(blacklisted_ips)
        self.blacklist_max_requests = blacklist_max_requests
        self.max_keys = max_keys
        self._clock = clock or time.monotonic
        self._windows: "OrderedDict[str, RateWindow]" = OrderedDict()
        logger.info(f"Rate limiter initialized with {len(self.policies)} categories")

    def __len__(self) -> int:
        return len(self._windows)

    def ensure_policy(self, category: str, policy: RatePolicy):
        self.policies.setdefault(category, policy)

    def classify(
        self,
        method: str,
        path: str,
        query_params: Optional[Mapping[str, str]] = None,
        identity: Optional[Identity] = None,
    ) -> Optional[str]:
        """
        Pick the rate limit category for a request.

        Returns None for elevated callers, which bypass rate limiting entirely.
        """
        if identity is not None:
            if identity.is_elevated:
                return None
            return RateCategory.AUTHENTICATED

        path = path.lower()
        method = method.upper()
        query_params = query_params or {}

        if "/auth/" in path:
            return RateCategory.AUTH
        if "/upload" in path or (method == "POST" and "/files" in path):
            return RateCategory.UPLOAD
        if "/password-reset" in path or "/forgot-password" in path:
            return RateCategory.PASSWORD_RESET
        if "/search" in path or query_params.get("search"):
            return RateCategory.SEARCH
        if method in MODIFICATION_METHODS:
            return RateCategory.MODIFICATION
        if "/api/" in path:
            return RateCategory.API
        return RateCategory.GENERAL

    @staticmethod
    def client_key(category: str, client_ip: str, identity: Optional[Identity] = None) -> str:
        category = getattr(category, "value", category)
        if identity is not None:
            return f"user:{identity.user_id}:{category}"
        return f"{client_ip}:{category}"

    def _limit_for(self, policy: RatePolicy, client_ip: Optional[str]) -> int:
        if client_ip is not None and client_ip in self.blacklisted_ips:
            return min(policy.max_requests, self.blacklist_max_requests)
        return policy.max_requests

    def _enforce_bound(self, now: float):
        if len(self._windows) <= self.max_keys:
            return
        expired = [key for key, window in self._windows.items() if window.is_expired(now)]
        for key in expired:
            del self._windows[key]
        while len(self._windows) > self.max_keys:
            self._windows.popitem(last=False)

    def admit(self, category: str, client_key: str, client_ip: Optional[str] = None) -> RateLimitDecision:
        """Count one request against the category budget for client_key."""
        policy = self.policies[category]
        category = getattr(category, "value", category)
        now = self._clock()

        if client_ip is not None and client_ip in self.whitelisted_ips:
            return RateLimitDecision(
                allowed=True,
                category=category,
                key=client_key,
                policy=policy,
                limit=policy.max_requests,
                remaining=policy.max_requests,
                reset_after=policy.window_seconds,
                counted=False,
            )

        limit = self._limit_for(policy, client_ip)
        window = self._windows.get(client_key)
        if window is None or window.is_expired(now):
            window = RateWindow(
                key=client_key,
                window_start=now,
                window_seconds=policy.window_seconds,
                max_requests=limit,
            )
            self._windows[client_key] = window
            self._enforce_bound(now)
        else:
            self._windows.move_to_end(client_key)
            window.max_requests = limit

        window.count += 1
        allowed = window.count <= limit
        decision = RateLimitDecision(
            allowed=allowed,
            category=category,
            key=client_key,
            policy=policy,
            limit=limit,
            remaining=max(0, limit - window.count),
            reset_after=max(0.0, window.reset_at - now),
            window_start=window.window_start,
        )
        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_key}", extra={
                "category": category,
                "count": window.count,
                "limit": limit,
            })
        return decision

    def check(
        self,
        method: str,
        path: str,
        client_ip: str,
        query_params: Optional[Mapping[str, str]] = None,
        identity: Optional[Identity] = None,
    ) -> Optional[RateLimitDecision]:
        """Classify and admit in one step; None means the caller is exempt."""
        category = self.classify(method, path, query_params, identity)
        if category is None:
            return None
        return self.admit(category, self.client_key(category, client_ip, identity), client_ip)

    def record_outcome(self, decision: RateLimitDecision, status_code: int) -> bool:
        """
        Settle a request after the response is known.

        Categories that skip successful requests get their unit back when the
        response succeeded and the window that counted it is still live.
        """
        if not decision.counted or not decision.policy.skip_successful_requests:
            return False
        if status_code >= 400:
            return False
        window = self._windows.get(decision.key)
        if window is None or window.window_start != decision.window_start or window.count <= 0:
            return False
        window.count -= 1
        return True

    def status(self, client_ip: str, identity: Optional[Identity] = None) -> Dict[str, Dict[str, float]]:
        """Remaining budget per category for a client, without counting."""
        now = self._clock()
        limits = {}
        for category, policy in self.policies.items():
            category = getattr(category, "value", category)
            limit = self._limit_for(policy, client_ip)
            window = self._windows.get(self.client_key(category, client_ip, identity))
            if window is None or window.is_expired(now):
                remaining, reset_in = limit, policy.window_seconds
            else:
                remaining, reset_in = max(0, limit - window.count), window.reset_at - now
            limits[category] = {
                "max": limit,
                "windowSeconds": policy.window_seconds,
                "remaining": remaining,
                "resetInSeconds": max(0, math.ceil(reset_in)),
            }
        return limits

    def clear(self):
        self._windows.clear()
