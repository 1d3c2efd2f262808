"""Result type returned by every transport-touching operation."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Classification of a failed remote operation"""

    OFFLINE = "offline"
    NETWORK = "network"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    REJECTED = "rejected"

    @property
    def is_transient(self) -> bool:
        """True for failures that are retried on the next connectivity event"""
        return self in (ErrorKind.OFFLINE, ErrorKind.NETWORK, ErrorKind.TIMEOUT)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a remote operation: either a value or an ``ErrorKind``."""

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: Optional[str] = None) -> "Result[T]":
        return cls(error=error, detail=detail)
