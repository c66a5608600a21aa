import asyncio

import pytest

from nearby.domain.activities.models import Membership
from nearby.domain.activities.policy import FeedKind
from nearby.domain.activities.reconciler import FeedView
from nearby.domain.activities.service import ActivityService
from nearby.domain.exceptions import TransientGatewayError
from nearby.gateway.memory import MemoryGateway
from nearby.gateway.realtime import EVENT_INSERT, TABLE_ACTIVITIES, TABLE_MEMBERS, ChangeEvent


class GatedGateway(MemoryGateway):
    """Holds the first activity query until ``release`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = asyncio.Event()
        self.entered = asyncio.Event()
        self.calls = 0

    async def query_activities(self, activity_filter, cursor, limit):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            await self.release.wait()
        return await super().query_activities(activity_filter, cursor, limit)


@pytest.fixture
def clock(base_time):
    return lambda: base_time


async def _seeded(gateway, make_activity, ids):
    for minutes, activity_id in enumerate(reversed(ids)):
        await gateway.insert_activity(make_activity(activity_id, minutes=minutes))


def _view(gateway, clock, kind=FeedKind.BROWSE, page_size=2):
    service = ActivityService(gateway, clock=clock)
    return FeedView(kind, "me", service, page_size=page_size, clock=clock)


@pytest.mark.asyncio
async def test_open_subscribes_and_dispose_releases(clock):
    gateway = MemoryGateway(clock=clock)
    view = _view(gateway, clock)

    view.open()
    assert gateway.dispatcher.subscriber_count(TABLE_ACTIVITIES) == 1
    assert gateway.dispatcher.subscriber_count(TABLE_MEMBERS) == 1
    view.open()
    assert gateway.dispatcher.subscriber_count() == 2

    view.dispose()
    view.dispose()
    assert gateway.dispatcher.subscriber_count() == 0
    with pytest.raises(RuntimeError):
        view.open()


@pytest.mark.asyncio
async def test_context_manager_scopes_subscription(clock):
    gateway = MemoryGateway(clock=clock)
    with _view(gateway, clock) as view:
        assert gateway.dispatcher.subscriber_count() == 2
    assert view.disposed is True
    assert gateway.dispatcher.subscriber_count() == 0


@pytest.mark.asyncio
async def test_refresh_then_load_more_until_exhausted(make_activity, clock):
    gateway = MemoryGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A", "B", "C"])
    view = _view(gateway, clock)

    assert await view.refresh() is True
    assert [row.id for row in view.rows] == ["A", "B"]
    assert view.snapshot.has_more is True

    assert await view.load_more() is True
    assert [row.id for row in view.rows] == ["A", "B", "C"]
    assert view.snapshot.has_more is False

    assert await view.load_more() is False
    assert [row.id for row in view.rows] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_load_more_before_first_page_refreshes(make_activity, clock):
    gateway = MemoryGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A"])
    view = _view(gateway, clock)

    assert await view.load_more() is True
    assert view.snapshot.loaded is True
    assert [row.id for row in view.rows] == ["A"]


@pytest.mark.asyncio
async def test_realtime_insert_lands_in_order(make_activity, clock):
    gateway = MemoryGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A", "C"])
    with _view(gateway, clock, page_size=10) as view:
        await view.refresh()
        await gateway.insert_activity(make_activity("B"))
        await gateway.insert_activity(make_activity("N", minutes=30))
        assert [row.id for row in view.rows] == ["N", "A", "C", "B"]


@pytest.mark.asyncio
async def test_realtime_close_removes_row_from_browse(make_activity, clock):
    gateway = MemoryGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A", "B"])
    with _view(gateway, clock, page_size=10) as view:
        await view.refresh()
        await gateway.update_activity("A", {"status": "closed"})
        assert [row.id for row in view.rows] == ["B"]


@pytest.mark.asyncio
async def test_own_membership_change_refilters_browse(make_activity, clock, base_time):
    gateway = MemoryGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A", "B"])
    with _view(gateway, clock, page_size=10) as view:
        await view.refresh()
        await gateway.upsert_membership(
            Membership(activity_id="A", user_id="someone-else", role="member", state="joined", joined_at=base_time)
        )
        assert [row.id for row in view.rows] == ["A", "B"]

        await gateway.upsert_membership(
            Membership(activity_id="A", user_id="me", role="member", state="joined", joined_at=base_time)
        )
        assert [row.id for row in view.rows] == ["B"]
        assert "A" in view.sets.joined_ids


@pytest.mark.asyncio
async def test_page_resolving_after_dispose_is_discarded(make_activity, clock):
    gateway = GatedGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A"])
    view = _view(gateway, clock).open()

    pending = asyncio.create_task(view.refresh())
    await gateway.entered.wait()
    view.dispose()
    gateway.release.set()

    assert await pending is False
    assert view.rows == ()
    assert view.snapshot.loaded is False


@pytest.mark.asyncio
async def test_older_refresh_cannot_overwrite_newer_one(make_activity, clock):
    gateway = GatedGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A"])
    view = _view(gateway, clock).open()

    stale = asyncio.create_task(view.refresh())
    await gateway.entered.wait()
    assert await view.refresh() is True
    await gateway.insert_activity(make_activity("B", minutes=10))
    assert [row.id for row in view.rows] == ["B", "A"]

    gateway.release.set()
    assert await stale is False
    assert [row.id for row in view.rows] == ["B", "A"]
    view.dispose()


@pytest.mark.asyncio
async def test_disposed_view_ignores_changes(make_activity, clock):
    gateway = MemoryGateway(clock=clock)
    view = _view(gateway, clock, page_size=10).open()
    await view.refresh()
    handler = view.handle_change
    view.dispose()

    await gateway.insert_activity(make_activity("A"))
    assert view.rows == ()
    handler_rows_before = view.rows

    handler(ChangeEvent(TABLE_ACTIVITIES, EVENT_INSERT, new=make_activity("B").to_row()))
    assert view.rows == handler_rows_before


class FlakyGateway(MemoryGateway):
    """Fails every activity query while ``down`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.down = False
        self.calls = 0

    async def query_activities(self, activity_filter, cursor, limit):
        self.calls += 1
        if self.down:
            raise TransientGatewayError("gateway_unavailable")
        return await super().query_activities(activity_filter, cursor, limit)


@pytest.mark.asyncio
async def test_page_failure_surfaces_without_retry_and_keeps_snapshot(make_activity, clock):
    gateway = FlakyGateway(clock=clock)
    await _seeded(gateway, make_activity, ["A", "B", "C"])
    view = _view(gateway, clock)
    assert await view.refresh() is True
    before = view.snapshot
    gateway.down = True

    calls = gateway.calls
    with pytest.raises(TransientGatewayError):
        await view.load_more()
    assert gateway.calls == calls + 1
    assert view.snapshot == before

    with pytest.raises(TransientGatewayError):
        await view.refresh()
    assert gateway.calls == calls + 2
    assert [row.id for row in view.rows] == ["A", "B"]
    assert view.snapshot.next_cursor == before.next_cursor

    gateway.down = False
    assert await view.load_more() is True
    assert [row.id for row in view.rows] == ["A", "B", "C"]
