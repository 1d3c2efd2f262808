from sqlalchemy import LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from fleetsync.db.base import Base


class DeviceRecord(Base):
    """One key/value blob of the persistent device store."""

    # Base provides: updated_at
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    def __repr__(self) -> str:
        return f"<DeviceRecord(key={self.key!r}, bytes={len(self.value or b'')})>"
