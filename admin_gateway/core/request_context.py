from typing import Callable, Optional

from starlette.requests import Request

from admin_gateway.schemas.identity import Identity

IdentityResolver = Callable[[Request], Optional[Identity]]


def get_client_ip(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def state_identity(request: Request) -> Optional[Identity]:
    """Default resolver: whatever the auth layer stored on request.state.identity."""
    identity = getattr(request.state, "identity", None)
    return identity if isinstance(identity, Identity) else None
