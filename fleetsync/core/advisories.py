"""
Advisory feed: the toast-style messages the engine emits.

Managers never raise to their callers; what a user sees is an advisory plus
the managers' state flags.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, List, Optional

from pydantic import BaseModel, Field

from fleetsync.core.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class AdvisoryLevel(str, Enum):
    """Presentation level of an advisory"""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


class Advisory(BaseModel):
    """A single transient message for the user"""

    message: str
    level: AdvisoryLevel = AdvisoryLevel.INFO
    source: Optional[str] = Field(None, description="Manager that emitted it")
    created_at: datetime


AdvisoryListener = Callable[[Advisory], None]


class AdvisoryFeed:
    """Collects advisories and forwards them to an optional listener."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        listener: Optional[AdvisoryListener] = None,
        maxlen: int = 100,
    ):
        self._clock = clock or system_clock
        self._listener = listener
        self._recent: Deque[Advisory] = deque(maxlen=maxlen)

    def emit(
        self,
        message: str,
        level: AdvisoryLevel = AdvisoryLevel.INFO,
        source: Optional[str] = None,
    ) -> Advisory:
        advisory = Advisory(
            message=message,
            level=level,
            source=source,
            created_at=datetime.fromtimestamp(self._clock.now(), tz=timezone.utc),
        )
        self._recent.append(advisory)
        logger.info(f"Advisory [{level.value}] {message}")
        if self._listener is not None:
            try:
                self._listener(advisory)
            except Exception:
                logger.exception("Advisory listener failed")
        return advisory

    def recent(self, source: Optional[str] = None) -> List[Advisory]:
        """Return retained advisories, oldest first."""
        if source is None:
            return list(self._recent)
        return [a for a in self._recent if a.source == source]

    def clear(self) -> None:
        self._recent.clear()
