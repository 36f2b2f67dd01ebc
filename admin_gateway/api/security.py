import secrets

from fastapi import APIRouter, Depends, Request

from admin_gateway.api.deps import get_security_gate
from admin_gateway.core.error_handlers import create_success_response
from admin_gateway.services.security_gate import SESSION_HEADER, SecurityGate

router = APIRouter()


@router.get("/csrf-token")
async def get_csrf_token(request: Request, gate: SecurityGate = Depends(get_security_gate)):
    """
    Issue a CSRF token bound to the caller's session.

    The session comes from the X-Session-ID header; a new session id is
    generated when none is sent. Issuing again replaces the session's
    previous token.
    """
    session_id = request.headers.get(SESSION_HEADER) or secrets.token_urlsafe(24)
    token = gate.issue_token(session_id)
    return create_success_response(
        {"csrfToken": token, "sessionId": session_id},
        headers={"X-CSRF-Token": token},
    )
