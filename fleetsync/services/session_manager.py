"""
Session Lifecycle Manager - owns the authenticated identity and its timeouts.

A session ends when it has been idle longer than the idle timeout or has
existed longer than the absolute maximum, whichever comes first. Logout clears
every identity-scoped key except the offline mutation queue.
"""

import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from fleetsync.core.clock import Clock, system_clock
from fleetsync.core.config import Settings, settings
from fleetsync.core.keys import LAST_ACTIVITY_KEY, SESSION_KEY
from fleetsync.core.logging_config import set_identity_context
from fleetsync.core.timers import PeriodicTimer, TimerFactory
from fleetsync.schemas.identity import ExpiryReason, Identity, SessionRecord, SessionState
from fleetsync.services.device_store import DeviceStore, ScopedKeyRegistry, StoreCorruptionError

logger = logging.getLogger(__name__)

LoginListener = Callable[[Identity], None]
LogoutListener = Callable[[str, Optional[ExpiryReason]], None]


class SessionLifecycleManager:
    """
    Tracks one session: Anonymous -> Authenticated -> Anonymous.

    The watchdog is a single timer handle that is stopped before it is
    re-armed, never stacked.
    """

    def __init__(
        self,
        store: DeviceStore,
        registry: ScopedKeyRegistry,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        timer_factory: TimerFactory = PeriodicTimer,
    ):
        self._store = store
        self._registry = registry
        self._clock = clock or system_clock
        self.config = config or settings

        self._identity: Optional[Identity] = None
        self._session_started_at: float = 0.0
        self._last_activity_at: float = 0.0
        self.expired_reason: Optional[ExpiryReason] = None

        self._watchdog = timer_factory(
            "session-watchdog", self.config.SESSION_CHECK_INTERVAL_SECONDS, self.tick
        )
        self._login_listeners: List[LoginListener] = []
        self._logout_listeners: List[LogoutListener] = []

    # ── State ──

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    @property
    def needs_setup(self) -> bool:
        return bool(self._identity and self._identity.needs_setup)

    @property
    def watchdog_armed(self) -> bool:
        return self._watchdog.running

    def state(self) -> Optional[SessionState]:
        if self._identity is None:
            return None
        return SessionState(
            identity=self._identity,
            session_started_at=self._session_started_at,
            last_activity_at=self._last_activity_at,
        )

    def on_login(self, listener: LoginListener) -> None:
        self._login_listeners.append(listener)

    def on_logout(self, listener: LogoutListener) -> None:
        self._logout_listeners.append(listener)

    # ── Lifecycle ──

    def restore(self) -> Optional[Identity]:
        """
        Resume the persisted session after a process start.

        Returns:
            The restored identity, or None if there was no valid session
        """
        now = self._clock.now()
        try:
            raw = self._store.get_json(SESSION_KEY)
            if raw is None:
                return None
            record = SessionRecord.model_validate(raw)
            last_activity = self._store.get_json(LAST_ACTIVITY_KEY)
        except (StoreCorruptionError, ValidationError) as e:
            # Session-fatal: do not attempt partial recovery
            logger.error(f"Persisted session is corrupt, logging out: {e}")
            self.logout()
            return None

        started_at = record.session_started_at
        if started_at is None:
            started_at = now
            self._store.set_json(
                SESSION_KEY,
                SessionRecord(identity=record.identity, session_started_at=now).model_dump(mode="json"),
            )
        elif now - started_at > self.config.MAX_SESSION_SECONDS:
            logger.info("Persisted session exceeded maximum duration")
            self._identity = record.identity
            self.logout(ExpiryReason.MAX_DURATION)
            return None

        identity = record.identity.with_setup_flag()
        self._identity = identity
        self._session_started_at = started_at
        if isinstance(last_activity, (int, float)):
            self._last_activity_at = max(float(last_activity), started_at)
        else:
            self._last_activity_at = now

        self._activate(identity)
        logger.info(f"Restored session for {identity.handle}")
        return identity

    def login(self, identity: Identity) -> Identity:
        """Start a fresh session for ``identity``."""
        if self._identity is not None and self._identity.handle != identity.handle:
            self.logout()

        now = self._clock.now()
        identity = identity.with_setup_flag()
        self._identity = identity
        self._session_started_at = now
        self._last_activity_at = now
        self.expired_reason = None

        self._store.set_json(
            SESSION_KEY,
            SessionRecord(identity=identity, session_started_at=now).model_dump(mode="json"),
        )
        self._store.set_json(LAST_ACTIVITY_KEY, now)

        self._activate(identity)
        logger.info(f"Login for {identity.handle}")
        return identity

    def record_activity(self) -> bool:
        """
        Note user activity.

        Writes are coalesced to one per ``ACTIVITY_WRITE_INTERVAL_SECONDS``.

        Returns:
            True if the activity stamp was written
        """
        if self._identity is None:
            return False
        now = self._clock.now()
        if now - self._last_activity_at <= self.config.ACTIVITY_WRITE_INTERVAL_SECONDS:
            return False
        self._last_activity_at = now
        self._store.set_json(LAST_ACTIVITY_KEY, now)
        return True

    def tick(self) -> Optional[ExpiryReason]:
        """
        Watchdog check.

        Returns:
            The expiry reason if the session was destroyed, otherwise None
        """
        if self._identity is None:
            return None
        now = self._clock.now()
        if now - self._last_activity_at > self.config.IDLE_TIMEOUT_SECONDS:
            self.logout(ExpiryReason.IDLE)
            return ExpiryReason.IDLE
        if now - self._session_started_at > self.config.MAX_SESSION_SECONDS:
            self.logout(ExpiryReason.MAX_DURATION)
            return ExpiryReason.MAX_DURATION
        return None

    def logout(self, reason: Optional[ExpiryReason] = None) -> None:
        """
        End the session.

        Clears the session keys and every key registered for the identity.
        The offline mutation queue is left untouched.
        """
        self._watchdog.stop()
        identity = self._identity
        self._identity = None
        if reason is not None:
            self.expired_reason = reason

        self._store.remove(SESSION_KEY)
        self._store.remove(LAST_ACTIVITY_KEY)

        handle = identity.handle if identity else None
        if handle:
            self._registry.purge(handle)
            logger.info(f"Logout for {handle}" + (f" ({reason.value})" if reason else ""))
        set_identity_context(None)

        for listener in list(self._logout_listeners):
            try:
                listener(handle or "", reason)
            except Exception:
                logger.exception("Logout listener failed")

    def dispose(self) -> None:
        """Stop the watchdog without ending the persisted session."""
        self._watchdog.stop()

    def _activate(self, identity: Identity) -> None:
        set_identity_context(identity.handle)
        self._watchdog.start()
        for listener in list(self._login_listeners):
            try:
                listener(identity)
            except Exception:
                logger.exception("Login listener failed")
