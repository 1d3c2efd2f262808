"""
Notification Aggregator.

One poll reads the whole record document and derives a feed from three
sources: low-rated inspections, support tickets and broadcast system messages.
Three persisted per-identity id sets control what is shown and popped up:
``read``, ``dismissed`` and ``surfaced``.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Set

from fleetsync.core.advisories import AdvisoryFeed, AdvisoryLevel
from fleetsync.core.clock import Clock, system_clock
from fleetsync.core.config import Settings, settings
from fleetsync.core.keys import (
    DISMISSED_NOTIFICATIONS_PREFIX,
    READ_NOTIFICATIONS_PREFIX,
    SURFACED_NOTIFICATIONS_PREFIX,
    scoped_key,
)
from fleetsync.core.timers import PeriodicTimer, TimerFactory
from fleetsync.schemas.identity import Identity, Role
from fleetsync.schemas.notification import Notification, Severity
from fleetsync.schemas.records import InspectionModule, parse_rating, rate_column
from fleetsync.services.connectivity import ConnectivityMonitor
from fleetsync.services.device_store import DeviceStore, ScopedKeyRegistry, StoreCorruptionError
from fleetsync.services.transport import RemoteTransport

logger = logging.getLogger(__name__)

ADVISORY_SOURCE = "notifications"

INSPECTION_SCAN_ROWS = 100
TICKET_SCAN_ROWS = 30

ACKNOWLEDGEMENTS_SHEET = "Acknowledgements"
SYSTEM_SHEET = "SystemNotification"
TICKETS_SHEET = "Support_Tickets"

_NON_ALNUM = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def parse_timestamp(raw: Any) -> Optional[float]:
    """
    Parse a source timestamp to epoch seconds.

    Accepts ISO-8601 strings (a trailing ``Z`` included) and epoch numbers in
    milliseconds. Naive values are taken as UTC.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw) / 1000.0
    text = str(raw).strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _format_rate(rate: float) -> str:
    return str(int(rate)) if rate.is_integer() else str(rate)


def _cell(row: List[Any], index: int) -> Any:
    return row[index] if index < len(row) else None


class NotificationAggregator:
    """Builds the merged notification feed for the bound identity."""

    def __init__(
        self,
        store: DeviceStore,
        registry: ScopedKeyRegistry,
        transport: RemoteTransport,
        connectivity: ConnectivityMonitor,
        advisories: AdvisoryFeed,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        timer_factory: TimerFactory = PeriodicTimer,
    ):
        self._store = store
        self._registry = registry
        self._transport = transport
        self._connectivity = connectivity
        self._advisories = advisories
        self._clock = clock or system_clock
        self.config = config or settings

        self._identity: Optional[Identity] = None
        self._generation = 0
        self._polling = False
        self._notifications: List[Notification] = []
        self._read: Set[str] = set()
        self._dismissed: Set[str] = set()
        self._surfaced: Set[str] = set()

        self._poll_timer = timer_factory(
            "notification-poll", self.config.NOTIFICATION_POLL_INTERVAL_SECONDS, self.poll
        )

    # ── Lifecycle ──

    def init(self, identity: Identity) -> None:
        self.dispose()
        self._identity = identity
        self._read = self._load_set(READ_NOTIFICATIONS_PREFIX)
        self._dismissed = self._load_set(DISMISSED_NOTIFICATIONS_PREFIX)
        self._surfaced = self._load_set(SURFACED_NOTIFICATIONS_PREFIX)
        self._poll_timer.start()

    def dispose(self) -> None:
        self._poll_timer.stop()
        self._generation += 1
        self._identity = None
        self._polling = False
        self._notifications = []
        self._read, self._dismissed, self._surfaced = set(), set(), set()

    def pause(self) -> None:
        """Stop periodic polling while the client is hidden."""
        self._poll_timer.stop()

    async def resume(self) -> None:
        """Restart periodic polling with an immediate poll."""
        if self._identity is None:
            return
        self._poll_timer.start()
        await self.poll()

    @property
    def polling_active(self) -> bool:
        return self._poll_timer.running

    # ── State ──

    @property
    def notifications(self) -> List[Notification]:
        return [n.model_copy(update={"read": n.id in self._read}) for n in self._notifications]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if n.id not in self._read)

    @property
    def read_ids(self) -> Set[str]:
        return set(self._read)

    @property
    def dismissed_ids(self) -> Set[str]:
        return set(self._dismissed)

    @property
    def surfaced_ids(self) -> Set[str]:
        return set(self._surfaced)

    def _set_key(self, prefix: str) -> str:
        return scoped_key(prefix, self._identity.handle)

    def _load_set(self, prefix: str) -> Set[str]:
        try:
            ids = self._store.get_json(self._set_key(prefix), default=[])
        except StoreCorruptionError as e:
            logger.error(f"Notification state {prefix} is unreadable, starting empty: {e}")
            return set()
        if not isinstance(ids, list):
            return set()
        return {str(i) for i in ids}

    def _save_set(self, prefix: str, ids: Set[str]) -> None:
        key = self._set_key(prefix)
        self._store.set_json(key, sorted(ids))
        self._registry.register(self._identity.handle, key)

    # ── Polling ──

    async def poll(self) -> List[Notification]:
        """
        Fetch the record document and rebuild the feed.

        Surfaces at most one advisory per call: the newest item that has not
        been surfaced, read or dismissed before.
        """
        if self._identity is None or self._polling or not self._connectivity.is_online:
            return self.notifications

        self._polling = True
        generation = self._generation
        try:
            result = await self._transport.read()
            if generation != self._generation:
                logger.info("Discarding notification poll from a previous session")
                return []
            if not result.ok:
                logger.warning(f"Notification poll failed: {result.error.value}")
                return self.notifications

            try:
                merged = self._build_feed(result.value)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Notification document has an unexpected shape: {e}")
                return self.notifications

            self._notifications = merged
            self._surface(merged)
            return self.notifications
        finally:
            if generation == self._generation:
                self._polling = False

    def _surface(self, merged: List[Notification]) -> None:
        fresh = [
            n for n in merged
            if n.id not in self._surfaced and n.id not in self._read and n.id not in self._dismissed
        ]
        if not fresh:
            return
        latest = fresh[0]
        self._advisories.emit(
            f"{latest.title} - {latest.message}",
            latest.severity.advisory_level,
            ADVISORY_SOURCE,
        )
        self._surfaced.update(n.id for n in fresh)
        self._save_set(SURFACED_NOTIFICATIONS_PREFIX, self._surfaced)

    def _build_feed(self, document: Mapping[str, Any]) -> List[Notification]:
        now = self._clock.now()
        acknowledged = {str(i) for i in (document.get(ACKNOWLEDGEMENTS_SHEET) or [])}

        merged: List[Notification] = []
        merged.extend(self._system_notifications(document.get(SYSTEM_SHEET)))
        merged.extend(self._ticket_alerts(document.get(TICKETS_SHEET), now))
        for module in InspectionModule:
            merged.extend(
                self._inspection_alerts(document.get(module.sheet), module.sheet, now, acknowledged)
            )

        merged.sort(key=lambda n: n.occurred_at, reverse=True)
        return merged[: self.config.MAX_NOTIFICATIONS]

    def _within_window(self, occurred_at: Optional[float], now: float) -> bool:
        return occurred_at is not None and now - occurred_at <= self.config.ALERT_MAX_AGE_SECONDS

    def _inspection_alerts(
        self, rows: Any, sheet: str, now: float, acknowledged: Set[str]
    ) -> List[Notification]:
        if not isinstance(rows, list) or len(rows) <= 1:
            return []
        rate_index = rate_column(sheet)

        alerts = []
        for row in rows[max(1, len(rows) - INSPECTION_SCAN_ROWS):]:
            if not isinstance(row, list):
                continue
            raw_ts = _cell(row, 1)
            occurred_at = parse_timestamp(raw_ts)
            if not self._within_window(occurred_at, now):
                continue

            rate = parse_rating(_cell(row, rate_index))
            if rate is None:
                continue
            if rate <= 2:
                critical = True
            elif rate == 3:
                critical = False
            else:
                continue

            truck = str(_cell(row, 2) or "Unknown").strip()
            alert_id = f"INS_{sheet}_{int(round(occurred_at * 1000))}_{_NON_ALNUM.sub('', truck)}"
            if alert_id in self._dismissed or alert_id in acknowledged:
                continue

            alerts.append(
                Notification(
                    id=alert_id,
                    title=f"Critical: {truck}" if critical else f"Warning: {truck}",
                    message=f"{sheet} check rated {_format_rate(rate)}/5.",
                    severity=Severity.CRITICAL if critical else Severity.WARNING,
                    timestamp=str(raw_ts),
                    occurred_at=occurred_at,
                    read=alert_id in self._read,
                    source_module=sheet,
                )
            )
        return alerts

    def _ticket_alerts(self, rows: Any, now: float) -> List[Notification]:
        if self._identity.role not in (Role.ADMIN, Role.SUPER_ADMIN):
            return []
        if not isinstance(rows, list) or len(rows) <= 1:
            return []

        alerts = []
        for row in rows[max(1, len(rows) - TICKET_SCAN_ROWS):]:
            if not isinstance(row, list):
                continue
            ticket_id = str(_cell(row, 0))
            raw_ts = _cell(row, 8)
            occurred_at = parse_timestamp(raw_ts)
            if not self._within_window(occurred_at, now):
                continue
            alert_id = f"TKT_ALERT_{ticket_id}"
            if alert_id in self._dismissed or _cell(row, 9) != "Open":
                continue
            alerts.append(
                Notification(
                    id=alert_id,
                    title="New Ticket",
                    message=f"#{ticket_id}: {_cell(row, 2)}",
                    severity=Severity.INFO,
                    timestamp=str(raw_ts),
                    occurred_at=occurred_at,
                    read=alert_id in self._read,
                    source_module="Support",
                    action_ref="view:support",
                )
            )
        return alerts

    def _addressed_to_me(self, recipient: str) -> bool:
        username = self._identity.username.strip().lower()
        role = self._identity.role.value.lower()
        if recipient in (username, role, "all"):
            return True
        return self._identity.role == Role.SUPER_ADMIN and recipient == "admin"

    def _system_notifications(self, rows: Any) -> List[Notification]:
        if not isinstance(rows, list) or len(rows) <= 1:
            return []

        messages = []
        for row in rows[1:]:
            if not isinstance(row, list):
                continue
            notification_id = str(_cell(row, 0))
            if notification_id in self._dismissed:
                continue
            recipient = str(_cell(row, 1)).strip().lower()
            read_on_server = str(_cell(row, 5)).upper() == "TRUE"
            if read_on_server or not self._addressed_to_me(recipient):
                continue

            raw_ts = _cell(row, 4)
            action = _cell(row, 6)
            messages.append(
                Notification(
                    id=notification_id,
                    title="System Message",
                    message=str(_cell(row, 3)),
                    severity=Severity.parse(_cell(row, 2)),
                    timestamp="" if raw_ts is None else str(raw_ts),
                    occurred_at=parse_timestamp(raw_ts) or 0.0,
                    read=notification_id in self._read,
                    source_module="System",
                    action_ref=str(action) if action else None,
                    is_remote_originated=True,
                )
            )
        return messages

    # ── User actions ──

    def _find(self, notification_id: str) -> Optional[Notification]:
        for notification in self._notifications:
            if notification.id == notification_id:
                return notification
        return None

    async def mark_read(self, notification_id: str) -> Optional[str]:
        """
        Mark ``notification_id`` read.

        Returns:
            The notification's action reference, if any
        """
        if self._identity is None:
            return None
        notification_id = str(notification_id)
        self._read.add(notification_id)
        self._save_set(READ_NOTIFICATIONS_PREFIX, self._read)

        target = self._find(notification_id)
        if target is None:
            return None
        if target.is_remote_originated and self._connectivity.is_online:
            result = await self._transport.write(
                {"action": "mark_notification_read", "id": notification_id}
            )
            if not result.ok:
                logger.info(f"Remote read receipt for {notification_id} not delivered: {result.error.value}")
        return target.action_ref

    def dismiss(self, notification_id: str) -> None:
        if self._identity is None:
            return
        notification_id = str(notification_id)
        self._dismissed.add(notification_id)
        self._surfaced.add(notification_id)
        self._save_set(DISMISSED_NOTIFICATIONS_PREFIX, self._dismissed)
        self._save_set(SURFACED_NOTIFICATIONS_PREFIX, self._surfaced)
        self._notifications = [n for n in self._notifications if n.id != notification_id]

    def clear_all(self) -> int:
        """Dismiss every notification in the current feed."""
        if self._identity is None:
            return 0
        ids = [n.id for n in self._notifications]
        self._dismissed.update(ids)
        self._surfaced.update(ids)
        self._save_set(DISMISSED_NOTIFICATIONS_PREFIX, self._dismissed)
        self._save_set(SURFACED_NOTIFICATIONS_PREFIX, self._surfaced)
        self._notifications = []
        return len(ids)

    async def acknowledge_globally(self, notification_id: str) -> bool:
        """
        Dismiss locally, then tell the record service so other users stop
        seeing the alert. The local dismissal is kept even if that fails.

        Returns:
            True if the remote acknowledgement was delivered
        """
        if self._identity is None:
            return False
        self.dismiss(notification_id)
        if not self._connectivity.is_online:
            return False

        result = await self._transport.write(
            {
                "action": "acknowledge_issue",
                "issueId": str(notification_id),
                "user": self._identity.name,
                "role": self._identity.role.value,
            }
        )
        if not result.ok:
            logger.info(f"Acknowledgement of {notification_id} not delivered: {result.error.value}")
            return False
        self._advisories.emit("Acknowledge recorded.", AdvisoryLevel.SUCCESS, ADVISORY_SOURCE)
        return True
