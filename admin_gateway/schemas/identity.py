from typing import Optional

from pydantic import BaseModel

ELEVATED_ROLES = frozenset({"admin", "superadmin"})


class Identity(BaseModel):
    """Authenticated caller, as resolved by the auth layer in front of the pipeline."""

    user_id: str
    role: Optional[str] = None

    @property
    def is_elevated(self) -> bool:
        return (self.role or "").lower() in ELEVATED_ROLES
