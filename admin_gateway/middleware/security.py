import json
import time
import uuid
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode

from starlette.background import BackgroundTask, BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from admin_gateway.core.error_handlers import ErrorHandler
from admin_gateway.core.exceptions import IntegrityError
from admin_gateway.core.logging import get_logger
from admin_gateway.core.request_context import IdentityResolver, get_client_ip, state_identity
from admin_gateway.services.sanitizer import DANGEROUS_HEADERS
from admin_gateway.services.security_gate import (
    CSRF_FIELD,
    CSRF_HEADER,
    SESSION_HEADER,
    SecurityGate,
)

logger = get_logger("middleware.security")

BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Outermost pipeline stage.

    Rejects non allow-listed clients, strips dangerous headers, sanitizes the
    query string and JSON or form body, enforces CSRF on state-changing requests,
    hardens response headers and emits an audit event once the response
    has been sent.
    """

    def __init__(self, app, gate: SecurityGate, identity_resolver: Optional[IdentityResolver] = None):
        super().__init__(app)
        self.gate = gate
        self.identity_resolver = identity_resolver or state_identity
        logger.info(
            f"Security middleware initialized (csrf={gate.config.enable_csrf}, "
            f"ip_whitelist={gate.config.enable_ip_whitelist})"
        )

    def _request_info(self, request: Request, request_id: str, client_ip: str) -> Dict[str, Any]:
        identity = self.identity_resolver(request)
        headers = request.headers
        return {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip,
            "user_id": identity.user_id if identity else None,
            "session_id": headers.get(SESSION_HEADER),
            "user_agent": headers.get("user-agent"),
            "referer": headers.get("referer"),
            "content_type": headers.get("content-type"),
            "content_length": headers.get("content-length"),
        }

    @staticmethod
    def _strip_dangerous_headers(request: Request):
        request.scope["headers"] = [
            (name, value)
            for name, value in request.scope["headers"]
            if name.decode("latin-1").lower() not in DANGEROUS_HEADERS
        ]

    @staticmethod
    def _replace_header(request: Request, name: bytes, value: bytes):
        headers = [(k, v) for k, v in request.scope["headers"] if k.lower() != name]
        headers.append((name, value))
        request.scope["headers"] = headers

    def _sanitize_query(self, request: Request):
        items = request.query_params.multi_items()
        if not items:
            return
        cleaned = [(name, self.gate.sanitize(value)) for name, value in items]
        if cleaned != items:
            request.scope["query_string"] = urlencode(cleaned).encode("latin-1")

    def _replay_body(self, request: Request, new_body: bytes):
        # BaseHTTPMiddleware replays request._body to the downstream app
        request._body = new_body
        self._replace_header(request, b"content-length", str(len(new_body)).encode("latin-1"))

    async def _sanitize_body(self, request: Request) -> Any:
        """Sanitize a JSON or urlencoded form body for downstream handlers; returns the parsed payload."""
        if request.method not in BODY_METHODS:
            return None
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            return await self._sanitize_json_body(request)
        if "application/x-www-form-urlencoded" in content_type:
            return await self._sanitize_form_body(request)
        return None

    async def _sanitize_json_body(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None
        try:
            payload = json.loads(body)
        except (ValueError, RecursionError):
            # Malformed JSON is left to the route's own validation
            return None

        cleaned = self.gate.sanitize(payload)
        if cleaned != payload:
            self._replay_body(request, json.dumps(cleaned).encode("utf-8"))
        return cleaned

    async def _sanitize_form_body(self, request: Request) -> Optional[Dict[str, str]]:
        body = await request.body()
        if not body:
            return None
        try:
            items = parse_qsl(body.decode("utf-8"), keep_blank_values=True)
        except (UnicodeDecodeError, ValueError):
            return None

        cleaned = [(name, self.gate.sanitize(value)) for name, value in items]
        if cleaned != items:
            self._replay_body(request, urlencode(cleaned).encode("utf-8"))
        return dict(cleaned)

    @staticmethod
    def _find_csrf_token(request: Request, payload: Any) -> Optional[str]:
        token = request.headers.get(CSRF_HEADER) or request.query_params.get(CSRF_FIELD)
        if not token and isinstance(payload, dict):
            value = payload.get(CSRF_FIELD)
            token = value if isinstance(value, str) else None
        return token

    async def _guard(self, request: Request, call_next, client_ip: str):
        try:
            self.gate.check_ip(client_ip)
        except IntegrityError as exc:
            return ErrorHandler.from_exception(exc)

        self._strip_dangerous_headers(request)
        if self.gate.config.enable_request_sanitization:
            self._sanitize_query(request)
        payload = await self._sanitize_body(request)

        try:
            self.gate.check_csrf(
                request.method,
                request.url.path,
                self._find_csrf_token(request, payload),
                request.headers.get(SESSION_HEADER),
            )
        except IntegrityError as exc:
            logger.warning(f"CSRF rejection for {request.method} {request.url.path}: {exc.error_code}")
            return ErrorHandler.from_exception(exc)

        return await call_next(request)

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        client_ip = get_client_ip(request)
        request_info = self._request_info(request, request_id, client_ip)

        try:
            response = await self._guard(request, call_next, client_ip)
        except Exception:
            # Aborted or failed downstream: the audit record still fires
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            self.gate.emit_audit(self.gate.audit_request(request_info, 500, elapsed_ms))
            raise

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.gate.harden_headers(response.headers, request.url.path)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"

        event = self.gate.audit_request(request_info, response.status_code, elapsed_ms)
        audit_task = BackgroundTask(self.gate.emit_audit, event)
        if response.background is None:
            response.background = audit_task
        else:
            response.background = BackgroundTasks(tasks=[response.background, audit_task])
        return response
