import os
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


DEV_ORIGINS = ["http://localhost:5173", "http://localhost:3000"]


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated env value, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    # API settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Admin Dashboard API"
    VERSION: str = "1.0.0"
    ENV: str = Field(default="dev", alias="ENV")
    DEBUG: bool = Field(default=False, alias="DEBUG")

    # Frontend origin, used for CORS and the CSP connect-src directive
    FRONTEND_URL: str = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", alias="LOG_LEVEL")
    LOG_FILE: str = Field(default="logs/app.log", alias="LOG_FILE")

    # Caching
    CACHE_TTL_SECONDS: int = Field(default=300, alias="CACHE_TTL_SECONDS")  # 5 minutes
    CACHE_MAX_ENTRIES: int = Field(default=1000, alias="CACHE_MAX_ENTRIES")

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    RATE_LIMIT_MAX_KEYS: int = Field(default=10000, alias="RATE_LIMIT_MAX_KEYS")
    WHITELISTED_IPS: str = Field(default="", alias="WHITELISTED_IPS")
    BLACKLISTED_IPS: str = Field(default="", alias="BLACKLISTED_IPS")
    BLACKLIST_MAX_REQUESTS: int = Field(default=10, alias="BLACKLIST_MAX_REQUESTS")

    # "category=max/window_seconds" pairs, e.g. "auth=5/900,search=30/60"
    RATE_LIMIT_POLICIES: str = Field(default="", alias="RATE_LIMIT_POLICIES")

    # Security
    ALLOWED_IPS: str = Field(default="", alias="ALLOWED_IPS")
    ENABLE_CSRF: Optional[bool] = Field(default=None, alias="ENABLE_CSRF")
    ENABLE_IP_WHITELIST: Optional[bool] = Field(default=None, alias="ENABLE_IP_WHITELIST")
    CSRF_TOKEN_TTL_SECONDS: int = Field(default=30 * 60, alias="CSRF_TOKEN_TTL_SECONDS")
    CSRF_MAX_SESSIONS: int = Field(default=10000, alias="CSRF_MAX_SESSIONS")
    SLOW_REQUEST_THRESHOLD_MS: int = Field(default=5000, alias="SLOW_REQUEST_THRESHOLD_MS")

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    # CORS
    @property
    def CORS_ORIGINS(self) -> List[str]:
        if not self.is_production:
            return list(DEV_ORIGINS)
        cors_origins = os.getenv("CORS_ORIGINS", "")
        origins = split_csv(cors_origins)
        return origins or [self.FRONTEND_URL]

    @field_validator("RATE_LIMIT_POLICIES")
    @classmethod
    def validate_rate_limit_policies(cls, value: str) -> str:
        parse_rate_limit_policies(value)
        return value

    @property
    def rate_limit_policies(self) -> Dict[str, Tuple[int, int]]:
        return parse_rate_limit_policies(self.RATE_LIMIT_POLICIES)


def parse_rate_limit_policies(raw: str) -> Dict[str, Tuple[int, int]]:
    """
    Parse a RATE_LIMIT_POLICIES string into {category: (max, window_seconds)}.

    Malformed entries raise ValueError instead of being skipped.
    """
    policies: Dict[str, Tuple[int, int]] = {}
    for mapping in split_csv(raw):
        category, sep, budget = mapping.partition("=")
        max_part, slash, window_part = budget.partition("/")
        if not sep or not slash:
            raise ValueError(f"Malformed rate limit policy entry: {mapping!r}")
        max_requests, window_seconds = int(max_part), int(window_part)
        if max_requests < 0 or window_seconds <= 0:
            raise ValueError(f"Rate limit policy out of range: {mapping!r}")
        policies[category.strip()] = (max_requests, window_seconds)
    return policies


class SecurityConfig(BaseModel):
    """Effective security switches for the current environment."""

    enable_csrf: bool
    enable_security_headers: bool = True
    enable_ip_whitelist: bool
    enable_audit_logging: bool = True
    enable_request_sanitization: bool = True
    strict_csp: bool
    allowed_origins: List[str]
    allowed_ips: List[str]
    frontend_url: str
    slow_request_threshold_ms: int = 5000


def get_security_config(current: Optional[Settings] = None) -> SecurityConfig:
    """Derive the security configuration; production turns on the strict switches."""
    current = current or settings
    is_production = current.is_production

    enable_csrf = current.ENABLE_CSRF if current.ENABLE_CSRF is not None else is_production
    enable_ip_whitelist = (
        current.ENABLE_IP_WHITELIST if current.ENABLE_IP_WHITELIST is not None else is_production
    )

    return SecurityConfig(
        enable_csrf=enable_csrf,
        enable_ip_whitelist=enable_ip_whitelist,
        strict_csp=is_production,
        allowed_origins=current.CORS_ORIGINS,
        allowed_ips=split_csv(current.ALLOWED_IPS),
        frontend_url=current.FRONTEND_URL,
        slow_request_threshold_ms=current.SLOW_REQUEST_THRESHOLD_MS,
    )


def get_settings() -> Settings:
    """Get the global settings instance."""
    if not hasattr(get_settings, "_instance"):
        get_settings._instance = Settings()
    return get_settings._instance


settings = get_settings()
