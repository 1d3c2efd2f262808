"""
Offline Mutation Queue.

Writes made while offline are appended to a single persisted list under an
identity-agnostic key and delivered strictly head first once connectivity
returns. An item leaves the queue only after its send is confirmed.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from fleetsync.core.advisories import AdvisoryFeed, AdvisoryLevel
from fleetsync.core.config import Settings, settings
from fleetsync.core.keys import OFFLINE_QUEUE_KEY
from fleetsync.core.result import ErrorKind
from fleetsync.services.connectivity import ConnectivityMonitor
from fleetsync.services.device_store import DeviceStore, StoreCorruptionError
from fleetsync.services.transport import RemoteTransport

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]
SyncCompleteHook = Callable[[], Awaitable[None]]

ADVISORY_SOURCE = "queue"


class SubmissionStatus(str, Enum):
    """Outcome of a direct write attempt"""

    SUCCESS = "success"
    OFFLINE_SAVED = "offline_saved"
    FAILED = "failed"


class OfflineMutationQueue:
    """
    Durable FIFO of opaque JSON mutations.

    ``drain()`` is reentrancy guarded and stops at the first failure of any
    kind, so a later item is never delivered ahead of an earlier one.
    """

    def __init__(
        self,
        store: DeviceStore,
        transport: RemoteTransport,
        connectivity: ConnectivityMonitor,
        advisories: AdvisoryFeed,
        config: Optional[Settings] = None,
        sleep: Sleeper = asyncio.sleep,
        gate: Callable[[], bool] = lambda: True,
    ):
        """
        Args:
            store: Device store holding the persisted queue
            transport: Remote transport used for delivery
            connectivity: Online/offline signal
            advisories: Feed that receives sync summaries
            config: Settings providing timeouts and delays
            sleep: Awaitable delay between delivered items
            gate: Returns False while no session exists; draining is skipped then
        """
        self._store = store
        self._transport = transport
        self._connectivity = connectivity
        self._advisories = advisories
        self.config = config or settings
        self._sleep = sleep
        self._gate = gate

        self.is_syncing = False
        self.is_poor_connection = False
        self.last_error: Optional[ErrorKind] = None
        self._pending: List[Any] = self.load()
        self._sync_complete_hooks: List[SyncCompleteHook] = []

    # ── Persistence ──

    def load(self) -> List[Any]:
        """Read the persisted queue; a malformed record is treated as empty."""
        try:
            items = self._store.get_json(OFFLINE_QUEUE_KEY, default=[])
        except StoreCorruptionError as e:
            logger.error(f"Offline queue is unreadable, treating as empty: {e}")
            return []
        if not isinstance(items, list):
            logger.error("Offline queue is not a list, treating as empty")
            return []
        return items

    def _save(self, items: List[Any]) -> None:
        self._store.set_json(OFFLINE_QUEUE_KEY, items)
        self._pending = list(items)

    @property
    def pending(self) -> List[Any]:
        """In-memory mirror of the persisted queue"""
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def on_sync_complete(self, hook: SyncCompleteHook) -> None:
        """Register ``hook`` to be awaited after the queue drains completely."""
        self._sync_complete_hooks.append(hook)

    # ── Operations ──

    def enqueue(self, payload: Any) -> int:
        """
        Append ``payload`` to the queue.

        Returns:
            The queue length after appending
        """
        items = self.load()
        items.append(payload)
        self._save(items)
        logger.info(f"Queued offline mutation ({len(items)} pending)")
        return len(items)

    async def submit(self, payload: Any) -> SubmissionStatus:
        """
        Write ``payload`` now, or queue it when that is not possible.

        Network-class failures queue the payload for later. A rejection by the
        record service is reported as failed and not queued.
        """
        if not self._connectivity.is_online:
            self.enqueue(payload)
            return SubmissionStatus.OFFLINE_SAVED

        result = await self._transport.write(
            payload, timeout=self.config.QUEUE_SEND_TIMEOUT_SECONDS
        )
        if result.ok:
            return SubmissionStatus.SUCCESS

        if result.error.is_transient:
            self.is_poor_connection = True
            self.enqueue(payload)
            return SubmissionStatus.OFFLINE_SAVED

        logger.error(f"Record service refused submission: {result.detail}")
        self._advisories.emit(
            f"Submission failed: {result.detail or result.error.value}",
            AdvisoryLevel.ERROR,
            ADVISORY_SOURCE,
        )
        return SubmissionStatus.FAILED

    async def drain(self) -> int:
        """
        Deliver queued mutations head first until empty or blocked.

        Safe to call at any time; it is a no-op while already draining,
        without a session, offline or with nothing queued.

        Returns:
            Number of mutations delivered by this call
        """
        if self.is_syncing:
            return 0
        if not self._gate() or not self._connectivity.is_online:
            return 0
        if not self.load():
            self._pending = []
            return 0

        self.is_syncing = True
        self.last_error = None
        delivered = 0
        try:
            while True:
                items = self.load()
                if not items:
                    break
                head = items[0]

                result = await self._transport.write(
                    head, timeout=self.config.QUEUE_SEND_TIMEOUT_SECONDS
                )
                if not result.ok:
                    self.last_error = result.error
                    if result.error.is_transient:
                        self.is_poor_connection = True
                        logger.warning(f"Queue drain paused: {result.error.value}")
                    else:
                        logger.error(
                            f"Queue drain stopped at head item: {result.error.value} {result.detail or ''}"
                        )
                    break

                self._remove_delivered(head)
                delivered += 1
                self.is_poor_connection = False

                if self._pending:
                    await self._sleep(self.config.QUEUE_INTER_ITEM_DELAY_SECONDS)
        except Exception:
            logger.exception("Queue drain aborted")
        finally:
            self.is_syncing = False

        self._pending = self.load()
        remaining = len(self._pending)
        if delivered > 0:
            if remaining == 0:
                self._advisories.emit(
                    f"All {delivered} offline records synced successfully!",
                    AdvisoryLevel.SUCCESS,
                    ADVISORY_SOURCE,
                )
            else:
                self._advisories.emit(
                    f"Synced {delivered} items. {remaining} remaining.",
                    AdvisoryLevel.INFO,
                    ADVISORY_SOURCE,
                )

        if delivered > 0 and remaining == 0:
            for hook in list(self._sync_complete_hooks):
                try:
                    await hook()
                except Exception:
                    logger.exception("Sync-complete hook failed")

        return delivered

    def _remove_delivered(self, item: Any) -> None:
        # Storage may have grown while the send was in flight
        items = self.load()
        if items and items[0] == item:
            items.pop(0)
        elif item in items:
            items.remove(item)
        self._save(items)
