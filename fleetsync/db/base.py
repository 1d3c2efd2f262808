"""Declarative base for the device store tables."""

import re
from datetime import datetime

from sqlalchemy import DateTime, MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

# Naming convention keeps constraint names stable across SQLite rebuilds
metadata = MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
})

_WORD_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class Base(DeclarativeBase):
    """Base class for device store tables."""

    metadata = metadata

    # DeviceRecord -> device_record
    @declared_attr.directive
    def __tablename__(cls) -> str:
        return _WORD_BOUNDARY.sub("_", cls.__name__).lower()

    # Set on insert and on every overwrite
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
