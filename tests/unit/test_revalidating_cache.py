"""
Unit tests for the revalidating history cache
"""

import asyncio

import pytest
import pytest_asyncio

from fleetsync.schemas.identity import Identity
from fleetsync.schemas.records import InspectionModule
from fleetsync.services.revalidating_cache import RevalidatingCache

pytestmark = pytest.mark.unit

GENERAL = InspectionModule.GENERAL


@pytest.fixture
def history_document(make_row, make_sheet, recent):
    return {
        "General": make_sheet(
            make_row(recent(7200), "ZM100", 5, row_id="G1"),
            make_row(recent(3600), "ZM200", 4, row_id="G2"),
            make_row(recent(600), "ZM300", 2, row_id="G3"),
        ),
        "Petroleum": make_sheet(make_row(recent(60), "PT1", 5, sheet="Petroleum", row_id="P1")),
        "Validation_Data": {
            "Truck_Reg_No": ["ZM100", "ZM200"],
            "Driver_Name": ["Dan"],
        },
    }


@pytest_asyncio.fixture
async def cache(store, registry, transport, connectivity, clock, config, inspector, remote, history_document):
    remote.document = history_document
    history = RevalidatingCache(
        store, registry, transport, connectivity, clock=clock, config=config
    )
    history.init(inspector)
    yield history
    history.dispose()


class TestRead:
    """Test TTL-driven reads"""

    @pytest.mark.asyncio
    async def test_absent_entry_is_fetched_newest_first(self, cache, remote):
        entry = await cache.read(GENERAL)

        assert remote.reads == 1
        assert [r.id for r in entry.payload] == ["G3", "G2", "G1"]
        assert entry.scope_key == "sc_history_insp_1_general"

    @pytest.mark.asyncio
    async def test_second_read_within_ttl_does_not_fetch(self, cache, remote, clock, config):
        await cache.read(GENERAL)
        clock.advance(config.CACHE_TTL_SECONDS)
        await cache.read(GENERAL)

        assert remote.reads == 1

    @pytest.mark.asyncio
    async def test_stale_entry_returned_then_revalidated(self, cache, remote, clock, config, make_row, recent):
        first = await cache.read(GENERAL)
        remote.document["General"].append(make_row(recent(10), "ZM400", 1, row_id="G4"))
        clock.advance(config.CACHE_TTL_SECONDS + 1)

        stale = await cache.read(GENERAL)
        assert stale.fetched_at == first.fetched_at
        await cache.join()

        assert remote.reads == 2
        fresh = cache.peek(GENERAL)
        assert fresh.payload[0].id == "G4"
        assert fresh.fetched_at == clock.now()

    @pytest.mark.asyncio
    async def test_offline_returns_cached_entry(self, cache, remote, connectivity, clock, config):
        await cache.read(GENERAL)
        await connectivity.set_online(False)
        clock.advance(config.CACHE_TTL_SECONDS * 3)

        entry = await cache.read(GENERAL, force=True)
        assert entry is not None
        assert remote.reads == 1

    @pytest.mark.asyncio
    async def test_offline_without_entry_returns_none(self, cache, remote, connectivity):
        await connectivity.set_online(False)
        assert await cache.read(GENERAL) is None
        assert remote.reads == 0

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_last_good_entry(self, cache, remote):
        good = await cache.read(GENERAL)
        remote.read_outcome = "html"

        entry = await cache.revalidate(GENERAL)
        assert entry.fetched_at == good.fetched_at
        assert len(entry.payload) == 3


class TestForceRefresh:
    """Test the manual refresh throttle"""

    @pytest.mark.asyncio
    async def test_force_twice_within_window_fetches_once(self, cache, remote, clock):
        await cache.read(GENERAL, force=True)
        clock.advance(10)
        await cache.read(GENERAL, force=True)

        assert remote.reads == 1

    @pytest.mark.asyncio
    async def test_force_after_window_fetches_again(self, cache, remote, clock, config):
        await cache.read(GENERAL, force=True)
        clock.advance(config.MIN_MANUAL_REFRESH_SECONDS)
        await cache.read(GENERAL, force=True)

        assert remote.reads == 2

    @pytest.mark.asyncio
    async def test_throttle_counts_failed_attempts(self, cache, remote, clock):
        remote.read_outcome = "network"
        assert await cache.read(GENERAL, force=True) is None
        clock.advance(5)
        remote.read_outcome = "ok"

        assert await cache.read(GENERAL, force=True) is None
        assert remote.reads == 1

    @pytest.mark.asyncio
    async def test_revalidate_ignores_throttle(self, cache, remote):
        await cache.read(GENERAL, force=True)
        await cache.revalidate(GENERAL)

        assert remote.reads == 2


class TestScoping:
    """Test identity namespacing and the validation side-channel"""

    @pytest.mark.asyncio
    async def test_entries_are_scoped_per_identity(self, cache, remote, store):
        await cache.read(GENERAL)

        cache.init(Identity(username="other@fleet.test", name="O"))
        assert cache.peek(GENERAL) is None
        assert cache.scope_key(GENERAL) == "sc_history_other_fleet_test_general"
        assert store.get_json("sc_history_insp_1_general") is not None

    @pytest.mark.asyncio
    async def test_validation_lists_cached_alongside(self, cache, registry):
        await cache.read(GENERAL)

        lists = cache.validation_lists
        assert lists.trucks == ["ZM100", "ZM200"]
        assert lists.drivers == ["Dan"]
        assert lists.locations == []
        assert "sc_validation_lists_insp_1" in registry.keys("insp_1")

    @pytest.mark.asyncio
    async def test_unparseable_validation_lists_do_not_fail_read(self, cache, remote):
        remote.document["Validation_Data"] = ["not", "a", "mapping"]

        entry = await cache.read(GENERAL)
        assert len(entry.payload) == 3
        assert cache.validation_lists is None

    @pytest.mark.asyncio
    async def test_fetch_from_previous_identity_is_discarded(self, cache, remote, store, clock):
        pending = cache._start_fetch(GENERAL)
        cache.dispose()

        assert await pending is None
        assert store.get("sc_history_insp_1_general") is None

    @pytest.mark.asyncio
    async def test_concurrent_readers_share_one_fetch(self, cache, remote):
        first, second = await asyncio.gather(cache.read(GENERAL), cache.read(GENERAL))

        assert remote.reads == 1
        assert first == second
        assert [r.id for r in first.payload] == ["G3", "G2", "G1"]

    @pytest.mark.asyncio
    async def test_cancelled_reader_leaves_shared_fetch_running(self, cache, remote):
        first = asyncio.create_task(cache.read(GENERAL))
        second = asyncio.create_task(cache.read(GENERAL))
        await asyncio.sleep(0)
        first.cancel()

        entry = await second

        assert remote.reads == 1
        assert len(entry.payload) == 3
        assert cache.peek(GENERAL) is not None

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.read(GENERAL)

        stats = cache.stats(GENERAL)
        assert stats.total == 3
        assert stats.pass_rate == 67
