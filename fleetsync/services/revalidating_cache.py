"""
Revalidating Cache for inspection history.

Entries are keyed per (module, identity) and served straight from the device
store. Stale entries are returned immediately while a background fetch
refreshes them; a forced refresh is throttled against the last network attempt
for the scope.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from fleetsync.core.clock import Clock, system_clock
from fleetsync.core.config import Settings, settings
from fleetsync.core.keys import HISTORY_PREFIX, VALIDATION_LISTS_PREFIX, scoped_key
from fleetsync.core.timers import PeriodicTimer, TimerFactory
from fleetsync.schemas.identity import Identity
from fleetsync.schemas.records import (
    CacheEntry,
    HistoryStats,
    InspectionModule,
    ValidationLists,
    history_stats,
    parse_history,
    parse_validation_lists,
)
from fleetsync.services.connectivity import ConnectivityMonitor
from fleetsync.services.device_store import DeviceStore, ScopedKeyRegistry, StoreCorruptionError
from fleetsync.services.transport import RemoteTransport

logger = logging.getLogger(__name__)


class RevalidatingCache:
    """
    TTL cache in front of the record service.

    Lifecycle: ``init(identity)`` binds the cache to one identity and arms the
    background poll; ``dispose()`` unbinds it. Fetches started before a
    ``dispose()`` complete as no-ops.
    """

    def __init__(
        self,
        store: DeviceStore,
        registry: ScopedKeyRegistry,
        transport: RemoteTransport,
        connectivity: ConnectivityMonitor,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        timer_factory: TimerFactory = PeriodicTimer,
    ):
        self._store = store
        self._registry = registry
        self._transport = transport
        self._connectivity = connectivity
        self._clock = clock or system_clock
        self.config = config or settings

        self._handle: Optional[str] = None
        self._generation = 0
        self._entries: Dict[str, CacheEntry] = {}
        self._last_attempt: Dict[str, float] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._validation_lists: Optional[ValidationLists] = None
        self.active_module: InspectionModule = InspectionModule.GENERAL

        self._poll_timer = timer_factory(
            "history-poll", self.config.HISTORY_POLL_INTERVAL_SECONDS, self._on_poll
        )

    # ── Lifecycle ──

    def init(self, identity: Identity) -> None:
        self.dispose()
        self._handle = identity.handle
        self._validation_lists = self._load_validation_lists()
        self._poll_timer.start()
        logger.debug(f"History cache bound to {self._handle}")

    def dispose(self) -> None:
        self._poll_timer.stop()
        self._generation += 1
        self._handle = None
        self._entries.clear()
        self._last_attempt.clear()
        self._in_flight.clear()
        self._validation_lists = None

    @property
    def bound(self) -> bool:
        return self._handle is not None

    def scope_key(self, module: InspectionModule) -> str:
        if self._handle is None:
            raise RuntimeError("History cache is not bound to an identity")
        return scoped_key(HISTORY_PREFIX, self._handle, module.value)

    def select_module(self, module: InspectionModule) -> None:
        self.active_module = module

    # ── Reads ──

    def peek(self, module: InspectionModule) -> Optional[CacheEntry]:
        """Return the stored entry for ``module`` without any network activity."""
        if self._handle is None:
            return None
        key = self.scope_key(module)
        entry = self._entries.get(key)
        if entry is not None:
            return entry
        try:
            raw = self._store.get_json(key)
            if raw is None:
                return None
            entry = CacheEntry.model_validate(raw)
        except (StoreCorruptionError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable cache entry {key}: {e}")
            return None
        self._entries[key] = entry
        return entry

    async def read(self, module: InspectionModule, force: bool = False) -> Optional[CacheEntry]:
        """
        Return history for ``module``.

        Args:
            module: Inspection module whose history is requested
            force: User-triggered refresh; ignored if the scope was fetched
                within ``MIN_MANUAL_REFRESH_SECONDS``

        Returns:
            The freshest entry available, or None when nothing is cached and
            no fetch succeeded
        """
        if self._handle is None:
            return None
        key = self.scope_key(module)
        entry = self.peek(module)
        now = self._clock.now()

        if force:
            last = self._last_attempt.get(key)
            if last is not None and now - last < self.config.MIN_MANUAL_REFRESH_SECONDS:
                logger.debug(f"Manual refresh of {key} throttled")
                return entry
        elif entry is not None:
            if now - entry.fetched_at > self.config.CACHE_TTL_SECONDS and self._connectivity.is_online:
                self._start_fetch(module)
            return entry

        if not self._connectivity.is_online:
            return entry
        return await asyncio.shield(self._start_fetch(module))

    async def revalidate(self, module: Optional[InspectionModule] = None) -> Optional[CacheEntry]:
        """Fetch ``module`` (default: the active module) ignoring TTL and throttle."""
        module = module or self.active_module
        if self._handle is None or not self._connectivity.is_online:
            return self.peek(module)
        return await asyncio.shield(self._start_fetch(module))

    async def join(self) -> None:
        """Wait for every outstanding background fetch."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def validation_lists(self) -> Optional[ValidationLists]:
        return self._validation_lists

    def stats(self, module: InspectionModule) -> HistoryStats:
        entry = self.peek(module)
        return history_stats(entry.payload if entry else [])

    def records(self, module: InspectionModule) -> List[Any]:
        entry = self.peek(module)
        return list(entry.payload) if entry else []

    # ── Fetching ──

    def _start_fetch(self, module: InspectionModule) -> asyncio.Task:
        # One fetch per scope; concurrent callers share the task, so callers shield it
        key = self.scope_key(module)
        task = self._in_flight.get(key)
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(
                self._fetch(module, key, self._handle, self._generation),
                name=f"cache-fetch:{key}",
            )
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return task

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _fetch(
        self, module: InspectionModule, key: str, handle: str, generation: int
    ) -> Optional[CacheEntry]:
        self._last_attempt[key] = self._clock.now()
        try:
            result = await self._transport.read()
        except Exception:
            logger.exception(f"History fetch for {key} failed")
            return self._current(module, generation)

        if generation != self._generation:
            logger.info(f"Discarding history fetch for {key} from a previous session")
            return None

        if not result.ok:
            logger.warning(f"History fetch for {key} failed: {result.error.value}")
            return self.peek(module)

        document = result.value
        try:
            records = parse_history(document, module)
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"History for {key} has an unexpected shape: {e}")
            return self.peek(module)

        entry = CacheEntry(scope_key=key, fetched_at=self._clock.now(), payload=records)
        self._entries[key] = entry
        self._store.set_json(key, entry.model_dump(mode="json"))
        self._registry.register(handle, key)
        self._store_validation_lists(document, handle)
        logger.debug(f"Cached {len(records)} records under {key}")
        return entry

    def _current(self, module: InspectionModule, generation: int) -> Optional[CacheEntry]:
        if generation != self._generation:
            return None
        return self.peek(module)

    async def _on_poll(self) -> None:
        if self._connectivity.is_online:
            await self.revalidate()

    # ── Validation lists ──

    def _validation_key(self, handle: str) -> str:
        return scoped_key(VALIDATION_LISTS_PREFIX, handle)

    def _load_validation_lists(self) -> Optional[ValidationLists]:
        try:
            raw = self._store.get_json(self._validation_key(self._handle))
            return ValidationLists.model_validate(raw) if raw else None
        except (StoreCorruptionError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable validation lists: {e}")
            return None

    def _store_validation_lists(self, document: Mapping[str, Any], handle: str) -> None:
        try:
            lists = parse_validation_lists(document)
        except (ValidationError, AttributeError, TypeError) as e:
            logger.debug(f"Validation lists not parsed: {e}")
            return
        if lists is None:
            return
        key = self._validation_key(handle)
        self._validation_lists = lists
        self._store.set_json(key, lists.model_dump(mode="json"))
        self._registry.register(handle, key)
