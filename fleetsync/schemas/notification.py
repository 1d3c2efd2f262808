"""Notification schemas"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from fleetsync.core.advisories import AdvisoryLevel


class Severity(str, Enum):
    """Notification severity"""

    CRITICAL = "critical"
    WARNING = "warning"
    SUCCESS = "success"
    INFO = "info"

    @classmethod
    def parse(cls, value: object) -> "Severity":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.INFO

    @property
    def advisory_level(self) -> AdvisoryLevel:
        return {
            Severity.CRITICAL: AdvisoryLevel.ERROR,
            Severity.WARNING: AdvisoryLevel.WARNING,
            Severity.SUCCESS: AdvisoryLevel.SUCCESS,
            Severity.INFO: AdvisoryLevel.INFO,
        }[self]


class Notification(BaseModel):
    """An entry of the merged notification feed"""

    id: str = Field(..., description="Deterministic id derived from source fields")
    title: str
    message: str
    severity: Severity = Severity.INFO
    timestamp: str = Field("", description="Source timestamp as received")
    occurred_at: float = Field(0.0, description="Parsed timestamp, epoch seconds; 0 if unknown")
    read: bool = False
    source_module: Optional[str] = None
    action_ref: Optional[str] = None
    is_remote_originated: bool = False
