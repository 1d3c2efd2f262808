"""Identity and session schemas"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fleetsync.core.keys import sanitize_handle


class Role(str, Enum):
    """Roles known to the record service"""

    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    INSPECTOR = "Inspector"
    OPERATIONS = "Operations"
    MAINTENANCE = "Maintenance"
    SECRETARY = "Secretary"
    OTHER = "Other"


LEAST_PRIVILEGED_ROLE = Role.INSPECTOR

_ROLE_LOOKUP = {role.value.lower(): role for role in Role}


def normalize_role(value: Any) -> Role:
    """Match a role case-insensitively; unknown values degrade to Inspector."""
    if isinstance(value, Role):
        return value
    raw = str(value).strip().lower() if value is not None else ""
    return _ROLE_LOOKUP.get(raw, LEAST_PRIVILEGED_ROLE)


class ExpiryReason(str, Enum):
    """Why a session was destroyed by the watchdog"""

    IDLE = "idle"
    MAX_DURATION = "max_duration"


class Identity(BaseModel):
    """Authenticated user as known to the client"""

    username: str = Field(..., min_length=1, description="Login handle, usually an email")
    name: str = Field("", description="Display name; empty until onboarding")
    role: Role = Field(LEAST_PRIVILEGED_ROLE, description="Role used for notification routing")
    position: Optional[str] = None
    needs_setup: bool = False

    model_config = ConfigDict(extra="allow")

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v: Any) -> Role:
        return normalize_role(v)

    @property
    def handle(self) -> str:
        """Storage-safe form of the username"""
        return sanitize_handle(self.username)

    def with_setup_flag(self) -> "Identity":
        """Return a copy whose ``needs_setup`` reflects missing onboarding."""
        return self.model_copy(
            update={"needs_setup": not self.name or self.needs_setup is True}
        )


class SessionRecord(BaseModel):
    """Persisted session blob"""

    identity: Identity
    session_started_at: Optional[float] = None


class SessionState(BaseModel):
    """Live session as seen by callers"""

    identity: Identity
    session_started_at: float
    last_activity_at: float
