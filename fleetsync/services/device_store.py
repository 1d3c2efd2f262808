"""Persistent device store on SQLite.

A key/value byte store that survives process restarts. There are no
transactions across keys: every multi-field entity is serialized as one blob
under one key.
"""
from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from fleetsync.core.keys import KEY_INDEX_PREFIX, scoped_key
from fleetsync.db.init_db import init_database
from fleetsync.db.models.device_record import DeviceRecord
from fleetsync.db.session import build_engine, build_session_factory, get_db_sync

logger = logging.getLogger(__name__)


class StoreCorruptionError(Exception):
    """Raised when a stored blob cannot be decoded"""
    pass


class DeviceStore:
    """Byte-oriented key/value store with JSON helpers."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_engine(cls, engine: Engine) -> "DeviceStore":
        init_database(engine)
        return cls(build_session_factory(engine))

    @classmethod
    def from_url(cls, database_url: Optional[str] = None) -> "DeviceStore":
        return cls.from_engine(build_engine(database_url))

    def get(self, key: str) -> Optional[bytes]:
        """Return the raw bytes stored under ``key``, or None."""
        with get_db_sync(self._session_factory) as db:
            row = db.scalar(select(DeviceRecord).where(DeviceRecord.key == key))
            if row is None:
                return None
            return bytes(row.value)

    def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        with get_db_sync(self._session_factory) as db:
            try:
                # Update first, insert only when nothing matched
                result = db.execute(
                    update(DeviceRecord)
                    .where(DeviceRecord.key == key)
                    .values(value=value)
                )
                if result.rowcount == 0:
                    db.add(DeviceRecord(key=key, value=value))
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(f"Device store write failed for key {key}: {e}")
                raise

    def remove(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        with get_db_sync(self._session_factory) as db:
            row = db.scalar(select(DeviceRecord).where(DeviceRecord.key == key))
            if row:
                db.delete(row)
                db.commit()

    def ping(self) -> None:
        """Run a trivial query; raises if the store is unreachable."""
        with get_db_sync(self._session_factory) as db:
            db.execute(text("SELECT 1"))

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Decode the JSON document stored under ``key``.

        Raises:
            StoreCorruptionError: If the stored bytes are not valid JSON
        """
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise StoreCorruptionError(f"Corrupt record under {key}: {e}") from e

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, default=str).encode("utf-8"))


class ScopedKeyRegistry:
    """
    Per-identity index of every identity-scoped key written to the store.

    The store offers no key enumeration, so logout reads this index to find
    what it must clear.
    """

    def __init__(self, store: DeviceStore):
        self._store = store

    def _index_key(self, handle: str) -> str:
        return scoped_key(KEY_INDEX_PREFIX, handle)

    def keys(self, handle: str) -> List[str]:
        try:
            keys = self._store.get_json(self._index_key(handle), default=[])
        except StoreCorruptionError:
            logger.error(f"Key index for {handle} is corrupt; starting a new one")
            return []
        if not isinstance(keys, list):
            return []
        return [str(k) for k in keys]

    def register(self, handle: str, key: str) -> None:
        keys = self.keys(handle)
        if key not in keys:
            keys.append(key)
            self._store.set_json(self._index_key(handle), keys)

    def purge(self, handle: str) -> List[str]:
        """Remove every key registered for ``handle`` plus the index itself."""
        keys = self.keys(handle)
        for key in keys:
            self._store.remove(key)
        self._store.remove(self._index_key(handle))
        logger.info(f"Purged {len(keys)} scoped keys for {handle}")
        return keys
