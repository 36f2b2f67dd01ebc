import pytest
from pydantic import ValidationError

from admin_gateway.core.config import Settings, get_security_config, parse_rate_limit_policies, split_csv
from admin_gateway.pipeline import build_pipeline
from admin_gateway.services.rate_limiter import RateCategory


def test_split_csv():
    assert split_csv(" 10.0.0.1, ,10.0.0.2 ") == ["10.0.0.1", "10.0.0.2"]
    assert split_csv("") == []
    assert split_csv(None) == []


def test_parse_rate_limit_policies():
    policies = parse_rate_limit_policies("auth=10/600, search=5/60")
    assert policies == {"auth": (10, 600), "search": (5, 60)}


@pytest.mark.parametrize("raw", [
    "auth",
    "auth=10",
    "auth=ten/600",
    "auth=10/0",
    "auth=-1/60",
])
def test_malformed_policies_are_rejected(raw):
    with pytest.raises(ValueError):
        parse_rate_limit_policies(raw)


def test_settings_validate_policies():
    with pytest.raises(ValidationError):
        Settings(RATE_LIMIT_POLICIES="auth=10")


def test_dev_security_defaults():
    config = get_security_config(Settings(ENV="dev"))

    assert config.enable_csrf is False
    assert config.enable_ip_whitelist is False
    assert config.strict_csp is False
    assert "http://localhost:5173" in config.allowed_origins


def test_production_security_defaults(monkeypatch):
    monkeypatch.delenv("CORS_ORIGINS", raising=False)
    config = get_security_config(Settings(ENV="production", FRONTEND_URL="https://admin.example.com"))

    assert config.enable_csrf is True
    assert config.enable_ip_whitelist is True
    assert config.strict_csp is True
    assert config.allowed_origins == ["https://admin.example.com"]


def test_production_switches_can_be_overridden():
    config = get_security_config(Settings(ENV="production", ENABLE_CSRF=False, ENABLE_IP_WHITELIST=False))

    assert config.enable_csrf is False
    assert config.enable_ip_whitelist is False


def test_build_pipeline_applies_settings(clock):
    pipeline = build_pipeline(
        Settings(
            RATE_LIMIT_POLICIES="search=5/120",
            CACHE_MAX_ENTRIES=50,
            BLACKLISTED_IPS="6.6.6.6",
            RATE_LIMIT_ENABLED=False,
        ),
        clock=clock,
    )

    assert pipeline.rate_limiter.policies[RateCategory.SEARCH].max_requests == 5
    assert pipeline.rate_limiter.policies[RateCategory.SEARCH].retry_after == "2 minutes"
    assert "6.6.6.6" in pipeline.rate_limiter.blacklisted_ips
    assert pipeline.cache.max_entries == 50
    assert pipeline.rate_limit_enabled is False
    assert len(pipeline.cache_rules) == 4


def test_zero_cache_ttl_disables_response_caching(clock):
    pipeline = build_pipeline(Settings(CACHE_TTL_SECONDS=0), clock=clock)
    assert pipeline.cache_rules == []


def test_build_pipeline_keeps_csrf_store_settings(clock):
    pipeline = build_pipeline(Settings(CSRF_TOKEN_TTL_SECONDS=60, CSRF_MAX_SESSIONS=5), clock=clock)

    store = pipeline.security.token_store
    assert store.ttl_seconds == 60
    assert store.max_sessions == 5

    token = pipeline.security.issue_token("session-1")
    clock.advance(60)
    assert not pipeline.security.validate_token(token, "session-1")
