"""
Unit tests for the notification aggregator
"""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from fleetsync.core.advisories import AdvisoryLevel
from fleetsync.schemas.identity import Identity
from fleetsync.schemas.notification import Severity
from fleetsync.services.notifications import NotificationAggregator, parse_timestamp
from fleetsync.services.transport import RemoteTransport

pytestmark = pytest.mark.unit


@pytest.fixture
def build_aggregator(store, registry, transport, connectivity, advisories, clock, config):
    created = []

    def _build(identity):
        aggregator = NotificationAggregator(
            store, registry, transport, connectivity, advisories, clock=clock, config=config
        )
        aggregator.init(identity)
        created.append(aggregator)
        return aggregator

    yield _build
    for aggregator in created:
        aggregator.dispose()


@pytest_asyncio.fixture
async def aggregator(build_aggregator, inspector):
    return build_aggregator(inspector)


def system_sheet(*rows):
    header = ["id", "recipient", "type", "message", "timestamp", "isRead", "actionLink"]
    return [header] + [list(r) for r in rows]


class TestTimestampParsing:
    """Test source timestamp handling"""

    def test_iso_with_z(self):
        assert parse_timestamp("2026-03-02T09:00:00.000Z") == 1772442000.0

    def test_naive_is_utc(self):
        assert parse_timestamp("2026-03-02 09:00:00") == 1772442000.0

    def test_unparseable(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None


class TestInspectionAlerts:
    """Test alerts derived from inspection sheets"""

    @pytest.mark.asyncio
    async def test_low_ratings_become_alerts(self, aggregator, remote, make_row, make_sheet, recent):
        remote.document = {
            "General": make_sheet(
                make_row(recent(120), "ZM 123", 2),
                make_row(recent(60), "ZM456", 3),
                make_row(recent(30), "ZM789", 5),
            ),
            "Acid": make_sheet(make_row(recent(10), "AC1", 1, sheet="Acid")),
        }

        feed = await aggregator.poll()

        assert [n.title for n in feed] == ["Critical: AC1", "Warning: ZM456", "Critical: ZM 123"]
        critical = feed[2]
        assert critical.severity == Severity.CRITICAL
        assert critical.message == "General check rated 2/5."
        assert critical.source_module == "General"
        assert critical.id.startswith("INS_General_") and critical.id.endswith("_ZM123")

    @pytest.mark.asyncio
    async def test_old_and_unparseable_rows_are_ignored(self, aggregator, remote, make_row, make_sheet, recent, config):
        remote.document = {
            "General": make_sheet(
                make_row(recent(config.ALERT_MAX_AGE_SECONDS + 60), "OLD1", 1),
                make_row("not a date", "BAD1", 1),
                make_row(recent(60), "NEW1", 1),
            ),
        }

        feed = await aggregator.poll()
        assert [n.title for n in feed] == ["Critical: NEW1"]

    @pytest.mark.asyncio
    async def test_blank_rate_is_not_an_alert(self, aggregator, remote, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", ""))}
        assert await aggregator.poll() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rate", ["2.5", 2.5, "nan", 3.5, 4])
    async def test_ratings_between_bands_are_not_alerts(self, aggregator, remote, make_row, make_sheet, recent, rate):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM123", rate))}
        assert await aggregator.poll() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rate,severity", [
        ("2", Severity.CRITICAL),
        (1.5, Severity.CRITICAL),
        ("3", Severity.WARNING),
        (3.0, Severity.WARNING),
    ])
    async def test_alert_bands(self, aggregator, remote, make_row, make_sheet, recent, rate, severity):
        remote.document = {"Petroleum": make_sheet(make_row(recent(60), "PT1", rate, sheet="Petroleum"))}

        feed = await aggregator.poll()

        assert [n.severity for n in feed] == [severity]

    @pytest.mark.asyncio
    async def test_server_acknowledged_alerts_are_excluded(self, aggregator, remote, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", 1))}
        alert_id = (await aggregator.poll())[0].id

        remote.document["Acknowledgements"] = [alert_id]
        assert await aggregator.poll() == []

    @pytest.mark.asyncio
    async def test_feed_is_capped(self, aggregator, remote, make_row, make_sheet, recent, config):
        rows = [make_row(recent(60 + i), f"T{i}", 1, row_id=str(i)) for i in range(70)]
        remote.document = {"General": make_sheet(*rows)}

        feed = await aggregator.poll()
        assert len(feed) == config.MAX_NOTIFICATIONS
        assert feed[0].title == "Critical: T0"


class TestSurfacing:
    """Test at-most-once pop-ups"""

    @pytest.mark.asyncio
    async def test_same_row_twice_surfaces_once(self, aggregator, remote, advisories, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM123", 2))}

        first = await aggregator.poll()
        second = await aggregator.poll()

        assert len(first) == len(second) == 1
        assert first[0].id == second[0].id
        popups = advisories.recent("notifications")
        assert len(popups) == 1
        assert popups[0].level == AdvisoryLevel.ERROR

    @pytest.mark.asyncio
    async def test_one_popup_per_cycle_for_newest(self, aggregator, remote, advisories, make_row, make_sheet, recent):
        remote.document = {
            "General": make_sheet(
                make_row(recent(300), "OLDER", 1),
                make_row(recent(30), "NEWER", 3),
            ),
        }

        await aggregator.poll()

        popups = advisories.recent("notifications")
        assert len(popups) == 1
        assert "NEWER" in popups[0].message
        assert len(aggregator.surfaced_ids) == 2

    @pytest.mark.asyncio
    async def test_surfaced_persists_across_reinit(self, aggregator, remote, advisories, inspector, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", 1))}
        await aggregator.poll()

        aggregator.init(inspector)
        await aggregator.poll()

        assert len(advisories.recent("notifications")) == 1

    @pytest.mark.asyncio
    async def test_read_item_never_pops(self, aggregator, remote, advisories, make_row, make_sheet, recent):
        timestamp = recent(60)
        remote.document = {"General": make_sheet(make_row(timestamp, "ZM1", 1))}
        alert_id = f"INS_General_{int(parse_timestamp(timestamp) * 1000)}_ZM1"

        await aggregator.mark_read(alert_id)
        feed = await aggregator.poll()

        assert [n.id for n in feed] == [alert_id]
        assert feed[0].read is True
        assert advisories.recent("notifications") == []

    @pytest.mark.asyncio
    async def test_poll_without_identity_is_noop(self, aggregator, remote, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", 1))}
        aggregator.dispose()

        assert await aggregator.poll() == []
        assert remote.reads == 0


class TestUserActions:
    """Test mark read, dismiss, clear and acknowledge"""

    @pytest.mark.asyncio
    async def test_mark_read_updates_unread_count(self, aggregator, remote, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", 1))}
        feed = await aggregator.poll()
        assert aggregator.unread_count == 1

        await aggregator.mark_read(feed[0].id)

        assert aggregator.unread_count == 0
        assert aggregator.notifications[0].read is True
        assert remote.writes == []

    @pytest.mark.asyncio
    async def test_dismiss_removes_and_blocks_popup(self, aggregator, remote, advisories, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", 1))}
        alert_id = (await aggregator.poll())[0].id

        aggregator.dismiss(alert_id)

        assert aggregator.notifications == []
        assert await aggregator.poll() == []
        assert alert_id in aggregator.surfaced_ids

    @pytest.mark.asyncio
    async def test_clear_all(self, aggregator, remote, make_row, make_sheet, recent):
        remote.document = {
            "General": make_sheet(make_row(recent(60), "ZM1", 1), make_row(recent(50), "ZM2", 2)),
        }
        await aggregator.poll()

        assert aggregator.clear_all() == 2
        assert aggregator.notifications == []
        assert len(aggregator.dismissed_ids) == 2
        assert await aggregator.poll() == []

    @pytest.mark.asyncio
    async def test_acknowledge_globally(self, aggregator, remote, advisories, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", 1))}
        alert_id = (await aggregator.poll())[0].id

        assert await aggregator.acknowledge_globally(alert_id) is True

        assert remote.writes == [
            {"action": "acknowledge_issue", "issueId": alert_id, "user": "Ina Inspector", "role": "Inspector"}
        ]
        assert alert_id in aggregator.dismissed_ids
        assert advisories.recent()[-1].message == "Acknowledge recorded."

    @pytest.mark.asyncio
    async def test_acknowledge_keeps_local_dismissal_on_failure(self, aggregator, remote, make_row, make_sheet, recent):
        remote.document = {"General": make_sheet(make_row(recent(60), "ZM1", 1))}
        alert_id = (await aggregator.poll())[0].id
        remote.write_outcomes = ["network"]

        assert await aggregator.acknowledge_globally(alert_id) is False
        assert alert_id in aggregator.dismissed_ids


class TestRemoteSources:
    """Test broadcast messages and support tickets"""

    @pytest.mark.asyncio
    async def test_system_messages_addressed_to_user(self, aggregator, remote, recent):
        remote.document = {
            "SystemNotification": system_sheet(
                ["S1", "insp-1", "info", "Hello you", recent(60), "FALSE", ""],
                ["S2", "inspector", "warning", "Hello role", recent(50), "FALSE", "view:general"],
                ["S3", "all", "success", "Hello all", recent(40), "FALSE", ""],
                ["S4", "maintenance", "info", "Not for you", recent(30), "FALSE", ""],
                ["S5", "all", "info", "Already read", recent(20), "TRUE", ""],
            ),
        }

        feed = await aggregator.poll()

        assert [n.id for n in feed] == ["S3", "S2", "S1"]
        assert all(n.is_remote_originated for n in feed)
        assert feed[1].severity == Severity.WARNING
        assert feed[1].action_ref == "view:general"

    @pytest.mark.asyncio
    async def test_mark_read_on_broadcast_notifies_remote(self, aggregator, remote, recent):
        remote.document = {
            "SystemNotification": system_sheet(
                ["S2", "inspector", "info", "Open general", recent(60), "FALSE", "view:general"],
            ),
        }
        await aggregator.poll()

        assert await aggregator.mark_read("S2") == "view:general"
        assert remote.writes == [{"action": "mark_notification_read", "id": "S2"}]

    @pytest.mark.asyncio
    async def test_superadmin_sees_admin_broadcasts(self, build_aggregator, remote, recent):
        aggregator = build_aggregator(Identity(username="root@fleet.test", name="Root", role="SuperAdmin"))
        remote.document = {
            "SystemNotification": system_sheet(["S1", "admin", "info", "Admins", recent(60), "FALSE", ""]),
        }

        assert [n.id for n in await aggregator.poll()] == ["S1"]

    @pytest.mark.asyncio
    async def test_open_tickets_for_admins_only(self, build_aggregator, inspector, admin, remote, recent):
        ticket = ["42", "user@fleet.test", "Brakes squeal", "", "", "", "", "", recent(60), "Open"]
        closed = ["43", "user@fleet.test", "Old issue", "", "", "", "", "", recent(60), "Closed"]
        remote.document = {"Support_Tickets": [["ticketId"] * 10, ticket, closed]}

        admin_feed = await build_aggregator(admin).poll()
        inspector_feed = await build_aggregator(inspector).poll()

        assert [n.id for n in admin_feed] == ["TKT_ALERT_42"]
        assert admin_feed[0].message == "#42: Brakes squeal"
        assert admin_feed[0].action_ref == "view:support"
        assert inspector_feed == []


class TestIdentityChange:
    """Test that a poll started for one identity never lands on the next"""

    @pytest.mark.asyncio
    async def test_poll_in_flight_at_logout_is_discarded(
        self, store, registry, connectivity, advisories, clock, config, inspector, make_row, make_sheet, recent
    ):
        started = asyncio.Event()
        release = asyncio.Event()
        document = {"General": make_sheet(make_row(recent(60), "ZM123", 2))}

        async def slow_handler(request):
            started.set()
            await release.wait()
            return httpx.Response(200, text=json.dumps(document))

        client = httpx.AsyncClient(transport=httpx.MockTransport(slow_handler))
        transport = RemoteTransport("https://records.example.test/exec", client=client, clock=clock)
        aggregator = NotificationAggregator(
            store, registry, transport, connectivity, advisories, clock=clock, config=config
        )
        aggregator.init(inspector)
        try:
            poll = asyncio.create_task(aggregator.poll())
            await started.wait()

            aggregator.init(Identity(username="ops@fleet.test", name="Oscar", role="Operations"))
            release.set()

            assert await poll == []
            assert aggregator.notifications == []
            assert aggregator.surfaced_ids == set()
            assert advisories.recent("notifications") == []
            assert store.get("sc_surfaced_notifications_insp_1") is None
            assert store.get("sc_surfaced_notifications_ops_fleet_test") is None
        finally:
            aggregator.dispose()
            await transport.aclose()
