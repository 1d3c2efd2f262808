"""
Sync engine composition root.

Wires the four managers to one device store, one transport and one
connectivity signal. The session manager gates the others: logging in binds
the cache and the notification aggregator to the identity, logging out
disposes them. Connectivity restoration drains the queue and revalidates.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from fleetsync.core.advisories import AdvisoryFeed, AdvisoryLevel
from fleetsync.core.clock import Clock, system_clock
from fleetsync.core.config import Settings, settings
from fleetsync.core.timers import PeriodicTimer, Sleeper, TimerFactory
from fleetsync.schemas.identity import ExpiryReason, Identity
from fleetsync.schemas.records import InspectionModule
from fleetsync.services.connectivity import ConnectivityMonitor
from fleetsync.services.device_store import DeviceStore, ScopedKeyRegistry
from fleetsync.services.mutation_queue import OfflineMutationQueue, SubmissionStatus
from fleetsync.services.notifications import NotificationAggregator
from fleetsync.services.revalidating_cache import RevalidatingCache
from fleetsync.services.session_manager import SessionLifecycleManager
from fleetsync.services.transport import RemoteTransport

logger = logging.getLogger(__name__)


class SyncEngine:
    """Owns every manager for one device."""

    def __init__(
        self,
        store: DeviceStore,
        transport: RemoteTransport,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        sleep: Sleeper = asyncio.sleep,
        online: bool = True,
        timer_factory: TimerFactory = PeriodicTimer,
        prefetch_on_login: bool = True,
    ):
        self.config = config or settings
        self.clock = clock or system_clock
        self.store = store
        self.transport = transport
        self.registry = ScopedKeyRegistry(store)
        self.connectivity = ConnectivityMonitor(online=online)
        self.advisories = AdvisoryFeed(clock=self.clock)
        self.visible = True
        self.prefetch_on_login = prefetch_on_login
        self._prefetch: Optional[asyncio.Task] = None

        self.session = SessionLifecycleManager(
            store, self.registry, clock=self.clock, config=self.config, timer_factory=timer_factory
        )
        self.cache = RevalidatingCache(
            store,
            self.registry,
            transport,
            self.connectivity,
            clock=self.clock,
            config=self.config,
            timer_factory=timer_factory,
        )
        self.queue = OfflineMutationQueue(
            store,
            transport,
            self.connectivity,
            self.advisories,
            config=self.config,
            sleep=sleep,
            gate=lambda: self.session.is_authenticated,
        )
        self.notifications = NotificationAggregator(
            store,
            self.registry,
            transport,
            self.connectivity,
            self.advisories,
            clock=self.clock,
            config=self.config,
            timer_factory=timer_factory,
        )

        self.session.on_login(self._bind)
        self.session.on_logout(self._unbind)
        self.queue.on_sync_complete(self._after_sync)
        self.connectivity.subscribe(self._on_connectivity)

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "SyncEngine":
        config = config or settings
        store = DeviceStore.from_url(config.DATABASE_URL)
        transport = RemoteTransport(
            config.SYNC_ENDPOINT_URL, client=httpx.AsyncClient(follow_redirects=True)
        )
        return cls(store, transport, config=config)

    # ── Lifecycle ──

    def start(self) -> Optional[Identity]:
        """Restore a persisted session, if any."""
        return self.session.restore()

    def login(self, identity: Identity) -> Identity:
        return self.session.login(identity)

    def logout(self, reason: Optional[ExpiryReason] = None) -> None:
        self.session.logout(reason)

    async def dispose(self) -> None:
        """Stop every timer and close the transport; persisted state is kept."""
        self._cancel_prefetch()
        self.session.dispose()
        self.cache.dispose()
        self.notifications.dispose()
        await self.transport.aclose()

    async def join(self) -> None:
        """Wait for the fetch scheduled at login and any background cache fetches."""
        if self._prefetch is not None:
            await asyncio.gather(self._prefetch, return_exceptions=True)
        await self.cache.join()

    def select_module(self, module: InspectionModule) -> None:
        self.cache.select_module(module)

    async def submit(self, payload: Any) -> SubmissionStatus:
        """Submit a mutation; a direct write refreshes the active history."""
        status = await self.queue.submit(payload)
        if status == SubmissionStatus.SUCCESS and self.session.is_authenticated:
            await self.cache.revalidate()
        return status

    # ── Host signals ──

    async def set_online(self, online: bool) -> None:
        await self.connectivity.set_online(online)

    async def set_visible(self, visible: bool) -> None:
        """Pause notification polling while hidden; poll at once when shown."""
        if visible == self.visible:
            return
        self.visible = visible
        if not visible:
            self.notifications.pause()
        elif self.session.is_authenticated:
            await self.notifications.resume()

    async def _on_connectivity(self, online: bool) -> None:
        if not online:
            self.queue.is_poor_connection = False
            return
        self.advisories.emit(
            "Connection restored. Attempting background sync...", AdvisoryLevel.INFO, "connectivity"
        )
        if not self.session.is_authenticated:
            return
        await self.queue.drain()
        await self.cache.revalidate()
        await self.notifications.poll()

    async def _after_sync(self) -> None:
        if self.session.is_authenticated:
            await self.cache.revalidate()

    # ── Session listeners ──

    def _bind(self, identity: Identity) -> None:
        self.cache.init(identity)
        self.notifications.init(identity)
        if not self.visible:
            self.notifications.pause()
        if self.prefetch_on_login:
            self._schedule_prefetch()

    def _unbind(self, handle: str, reason: Optional[ExpiryReason]) -> None:
        self._cancel_prefetch()
        self.cache.dispose()
        self.notifications.dispose()
        if reason is not None:
            self.advisories.emit(_expiry_message(reason), AdvisoryLevel.WARNING, "session")

    # ── First fetch after login ──

    def _schedule_prefetch(self) -> None:
        self._cancel_prefetch()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; first fetch left to the poll timers")
            return
        self._prefetch = loop.create_task(self._fetch_after_login(), name="prefetch-after-login")

    def _cancel_prefetch(self) -> None:
        if self._prefetch is not None:
            self._prefetch.cancel()
            self._prefetch = None

    async def _fetch_after_login(self) -> None:
        await self.cache.read(self.cache.active_module)
        if self.visible:
            await self.notifications.poll()


def _expiry_message(reason: ExpiryReason) -> str:
    if reason == ExpiryReason.IDLE:
        return "Session expired due to inactivity. Please log in again."
    return "Session reached its maximum duration. Please log in again."
