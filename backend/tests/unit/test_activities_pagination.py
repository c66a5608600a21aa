from datetime import timedelta

import pytest

from nearby.domain.activities.models import (
    ActivityCursor,
    CreatorFilter,
    IdsFilter,
    OpenActivitiesFilter,
    feed_sort_key,
)
from nearby.domain.activities.pagination import fetch_page, next_cursor
from nearby.gateway.memory import MemoryGateway


class ExplodingGateway(MemoryGateway):
    async def query_activities(self, activity_filter, cursor, limit):
        raise AssertionError("gateway should not be queried")


async def _seed(gateway, activities):
    for activity in activities:
        await gateway.insert_activity(activity)


@pytest.mark.asyncio
async def test_cursor_round_trip_covers_2n_rows_without_overlap(make_activity, base_time):
    gateway = MemoryGateway(clock=lambda: base_time)
    n = 3
    # ids collide on created_at in pairs so the id tie-break is exercised
    rows = [make_activity(f"a{i}", minutes=i // 2) for i in range(2 * n + 1)]
    await _seed(gateway, rows)
    flt = OpenActivitiesFilter(now=base_time)

    first = await fetch_page(gateway, flt, None, n)
    second = await fetch_page(gateway, flt, first.next_cursor, n)

    combined = list(first.rows) + list(second.rows)
    assert first.has_more is True
    assert second.has_more is True
    assert len({row.id for row in combined}) == 2 * n
    keys = [feed_sort_key(row) for row in combined]
    assert keys == sorted(keys, reverse=True)
    assert len(set(keys)) == len(keys)

    last = await fetch_page(gateway, flt, second.next_cursor, n)
    assert len(last.rows) == 1
    assert last.has_more is False
    assert {row.id for row in combined} | {last.rows[0].id} == {row.id for row in rows}


@pytest.mark.asyncio
async def test_three_row_dataset_with_limit_two(make_activity, base_time):
    gateway = MemoryGateway(clock=lambda: base_time)
    a = make_activity("A", minutes=3)
    b = make_activity("B", minutes=2)
    c = make_activity("C", minutes=1)
    await _seed(gateway, [c, a, b])
    flt = OpenActivitiesFilter(now=base_time)

    page = await fetch_page(gateway, flt, None, 2)
    assert [row.id for row in page.rows] == ["A", "B"]
    assert page.has_more is True
    assert page.next_cursor == ActivityCursor(created_at=b.created_at, id="B")

    page = await fetch_page(gateway, flt, ActivityCursor(created_at=b.created_at, id="B"), 2)
    assert [row.id for row in page.rows] == ["C"]
    assert page.has_more is False


@pytest.mark.asyncio
async def test_full_final_page_reports_has_more_then_empty_page(make_activity, base_time):
    gateway = MemoryGateway(clock=lambda: base_time)
    await _seed(gateway, [make_activity("A", minutes=2), make_activity("B", minutes=1)])
    flt = CreatorFilter(creator_id="creator")

    page = await fetch_page(gateway, flt, None, 2)
    assert page.has_more is True

    tail = await fetch_page(gateway, flt, page.next_cursor, 2)
    assert tail.rows == ()
    assert tail.has_more is False
    assert tail.next_cursor is None


@pytest.mark.asyncio
async def test_empty_id_set_short_circuits():
    page = await fetch_page(ExplodingGateway(), IdsFilter.of([]), None, 10)
    assert page.rows == ()
    assert page.has_more is False


@pytest.mark.asyncio
async def test_cursor_is_a_position_not_a_row_reference(make_activity, base_time):
    gateway = MemoryGateway(clock=lambda: base_time)
    await _seed(gateway, [make_activity("A", minutes=3), make_activity("C", minutes=1)])
    ghost = ActivityCursor(created_at=base_time + timedelta(minutes=2), id="B")

    page = await fetch_page(gateway, OpenActivitiesFilter(now=base_time), ghost, 10)
    assert [row.id for row in page.rows] == ["C"]


@pytest.mark.asyncio
async def test_ids_filter_and_expired_rows(make_activity, base_time):
    gateway = MemoryGateway(clock=lambda: base_time)
    await _seed(
        gateway,
        [
            make_activity("A", minutes=3),
            make_activity("B", minutes=2, expires_at=base_time),
            make_activity("C", minutes=1, status="closed"),
        ],
    )
    browse = await fetch_page(gateway, OpenActivitiesFilter(now=base_time), None, 10)
    assert [row.id for row in browse.rows] == ["A"]

    by_ids = await fetch_page(gateway, IdsFilter.of(["B", "C", "missing"]), None, 10)
    assert [row.id for row in by_ids.rows] == ["B", "C"]


@pytest.mark.asyncio
async def test_invalid_limit_is_rejected():
    with pytest.raises(ValueError, match="invalid_limit"):
        await fetch_page(MemoryGateway(), OpenActivitiesFilter(), None, 0)


def test_next_cursor_of_empty_rows_is_none():
    assert next_cursor([]) is None
