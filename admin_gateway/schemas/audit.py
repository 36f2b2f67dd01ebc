from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AuditEvent(BaseModel):
    """Security audit record for one request."""

    timestamp: datetime
    request_id: str
    method: str
    path: str
    client_ip: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    content_type: Optional[str] = None
    content_length: Optional[str] = None
    status_code: int
    response_time_ms: float
    flagged: bool = False
