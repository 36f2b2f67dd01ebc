"""
Security gate: CSRF tokens, response header hardening, IP allow-listing
and security audit records.
"""

import hmac
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional

from admin_gateway.core.config import SecurityConfig
from admin_gateway.core.exceptions import CSRFTokenInvalid, CSRFTokenMissing, IPNotAllowed
from admin_gateway.core.logging import get_logger
from admin_gateway.schemas.audit import AuditEvent
from admin_gateway.services.sanitizer import sanitize

logger = get_logger("services.security_gate")
audit_logger = get_logger("security.audit")

Clock = Callable[[], float]
AuditSink = Callable[[AuditEvent], None]

CSRF_TOKEN_BYTES = 32
CSRF_HEADER = "x-csrf-token"
SESSION_HEADER = "x-session-id"
CSRF_FIELD = "_csrf"

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
CSRF_EXEMPT_PATHS = ("/auth/login", "/auth/register")
NO_STORE_PATHS = ("/auth/", "/admin/")
IDENTIFYING_HEADERS = ("server", "x-powered-by")

PERMISSIONS_POLICY = (
    "geolocation=(self), camera=(), microphone=(), payment=(self), "
    "usb=(), magnetometer=(), gyroscope=(), accelerometer=()"
)


@dataclass
class CSRFTokenRecord:
    session_id: str
    token: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CSRFTokenStore:
    """
    One live CSRF token per session.

    Issuing a token for a session overwrites the previous one. Expired
    records are dropped when looked up and swept on every issue.
    """

    def __init__(self, ttl_seconds: float = 30 * 60, max_sessions: int = 10000, clock: Optional[Clock] = None):
        if max_sessions <= 0:
            raise ValueError("max_sessions must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock or time.monotonic
        self._records: "OrderedDict[str, CSRFTokenRecord]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._records)

    def issue(self, session_id: str) -> str:
        now = self._clock()
        token = secrets.token_hex(CSRF_TOKEN_BYTES)
        self._records[session_id] = CSRFTokenRecord(
            session_id=session_id,
            token=token,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self._records.move_to_end(session_id)
        self.purge_expired()
        while len(self._records) > self.max_sessions:
            self._records.popitem(last=False)
        return token

    def get(self, session_id: str) -> Optional[CSRFTokenRecord]:
        record = self._records.get(session_id)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            del self._records[session_id]
            return None
        return record

    def validate(self, token: Optional[str], session_id: Optional[str]) -> bool:
        """
        Check a submitted token against the session's live token.

        Both sides are decoded to fixed width bytes; a length mismatch is
        rejected before the constant-time comparison runs.
        """
        if not token or not session_id:
            return False
        try:
            record = self.get(session_id)
            if record is None:
                return False
            expected = bytes.fromhex(record.token)
            actual = bytes.fromhex(token)
            if len(expected) != len(actual):
                return False
            return hmac.compare_digest(expected, actual)
        except Exception:
            logger.exception("CSRF token comparison failed")
            return False

    def revoke(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, record in self._records.items() if record.is_expired(now)]
        for sid in expired:
            del self._records[sid]
        return len(expired)

    def clear(self):
        self._records.clear()


def log_audit_event(event: AuditEvent):
    """Default audit sink: flagged events are warnings, the rest debug."""
    if event.flagged:
        audit_logger.warning(f"Security audit: {event.model_dump_json()}")
    else:
        audit_logger.debug(f"Security audit: {event.model_dump_json()}")


class SecurityGate:
    def __init__(
        self,
        config: SecurityConfig,
        token_store: Optional[CSRFTokenStore] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.config = config
        self.token_store = token_store if token_store is not None else CSRFTokenStore()
        self.audit_sink = audit_sink or log_audit_event
        self.allowed_ips = frozenset(config.allowed_ips)

    # Payloads

    def sanitize(self, payload: Any) -> Any:
        if not self.config.enable_request_sanitization:
            return payload
        return sanitize(payload)

    # Headers

    def content_security_policy(self) -> str:
        connect_src = " ".join(["'self'", self.config.frontend_url])
        directives = [
            "default-src 'self'",
            "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com https://cdnjs.cloudflare.com",
            "script-src 'self' https://cdnjs.cloudflare.com"
            if self.config.strict_csp
            else "script-src 'self' 'unsafe-inline' https://cdnjs.cloudflare.com",
            "img-src 'self' data: https:" if self.config.strict_csp else "img-src 'self' data: https: http:",
            "font-src 'self' https://fonts.gstatic.com https://cdnjs.cloudflare.com",
            f"connect-src {connect_src}",
            "frame-src 'none'",
            "object-src 'none'",
            "media-src 'self'",
            "manifest-src 'self'",
            "worker-src 'self'",
        ]
        return "; ".join(directives)

    def harden_headers(self, headers: MutableMapping[str, str], path: str):
        """Strip identifying headers and apply the hardened header set in place."""
        for name in IDENTIFYING_HEADERS:
            if name in headers:
                del headers[name]

        if not self.config.enable_security_headers:
            return

        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["X-XSS-Protection"] = "1; mode=block"
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        headers["Permissions-Policy"] = PERMISSIONS_POLICY
        csp_header = (
            "Content-Security-Policy"
            if self.config.strict_csp
            else "Content-Security-Policy-Report-Only"
        )
        headers[csp_header] = self.content_security_policy()

        lowered = path.lower()
        if any(segment in lowered for segment in NO_STORE_PATHS):
            headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate"
            headers["Pragma"] = "no-cache"
            headers["Expires"] = "0"

    # CSRF

    def issue_token(self, session_id: str) -> str:
        token = self.token_store.issue(session_id)
        logger.debug(f"Issued CSRF token for session {session_id[:8]}")
        return token

    def validate_token(self, token: Optional[str], session_id: Optional[str]) -> bool:
        return self.token_store.validate(token, session_id)

    def requires_csrf(self, method: str, path: str) -> bool:
        if not self.config.enable_csrf:
            return False
        if method.upper() in SAFE_METHODS:
            return False
        lowered = path.lower()
        return not any(exempt in lowered for exempt in CSRF_EXEMPT_PATHS)

    def check_csrf(self, method: str, path: str, token: Optional[str], session_id: Optional[str]):
        """Raise CSRFTokenMissing / CSRFTokenInvalid when a protected request fails."""
        if not self.requires_csrf(method, path):
            return
        if not token:
            raise CSRFTokenMissing()
        if not self.validate_token(token, session_id):
            raise CSRFTokenInvalid()

    # IP allow-list

    def is_ip_allowed(self, client_ip: str) -> bool:
        if not self.config.enable_ip_whitelist or not self.allowed_ips:
            return True
        return client_ip in self.allowed_ips

    def check_ip(self, client_ip: str):
        if not self.is_ip_allowed(client_ip):
            logger.warning(f"Rejected request from non allow-listed IP {client_ip}")
            raise IPNotAllowed()

    # Audit

    def audit_request(
        self,
        request_info: Mapping[str, Any],
        status_code: int,
        response_time_ms: float,
    ) -> AuditEvent:
        """Build the audit event for a finished request; flags errors and slow requests."""
        flagged = status_code >= 400 or response_time_ms > self.config.slow_request_threshold_ms
        return AuditEvent(
            timestamp=datetime.now(timezone.utc),
            status_code=status_code,
            response_time_ms=round(response_time_ms, 2),
            flagged=flagged,
            **request_info,
        )

    def emit_audit(self, event: AuditEvent):
        if not self.config.enable_audit_logging:
            return
        try:
            self.audit_sink(event)
        except Exception:
            logger.exception("Audit sink failed")

    def stats(self) -> Dict[str, Any]:
        return {
            "live_csrf_tokens": len(self.token_store),
            "csrf_enabled": self.config.enable_csrf,
            "ip_whitelist_enabled": self.config.enable_ip_whitelist,
        }

    def clear(self):
        self.token_store.clear()
