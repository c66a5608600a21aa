import contextlib

import pytest

from nearby.domain.activities.models import ActivityCursor, OpenActivitiesFilter
from nearby.domain.exceptions import TransientGatewayError
from nearby.gateway.postgres import PostgresGateway
from nearby.gateway.realtime import ChangeDispatcher, decode_change

STREAM = "x:nearby.changes.pg-test"


class FakeConnection:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    async def execute(self, query, *args):
        self.calls.append((query, args))
        if self.error:
            raise self.error
        return "INSERT 0 1"

    async def fetch(self, query, *args):
        self.calls.append((query, args))
        if self.error:
            raise self.error
        return self.rows

    async def fetchrow(self, query, *args):
        rows = await self.fetch(query, *args)
        return rows[0] if rows else None


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @contextlib.asynccontextmanager
    async def acquire(self):
        yield self.conn


def _gateway(conn, redis=None):
    async def pool_factory():
        return FakePool(conn)

    return PostgresGateway(
        redis=redis,
        dispatcher=ChangeDispatcher(),
        stream_key=STREAM,
        stream_maxlen=1000,
        pool_factory=pool_factory,
    )


@pytest.mark.asyncio
async def test_insert_publishes_change_to_stream(fake_redis, make_activity):
    conn = FakeConnection()
    gateway = _gateway(conn, redis=fake_redis)

    activity = await gateway.insert_activity(make_activity("A"))

    assert activity.id == "A"
    entries = await fake_redis.xrange(STREAM)
    assert len(entries) == 1
    change = decode_change(entries[0][1])
    assert change.table == "activities"
    assert change.new["id"] == "A"


@pytest.mark.asyncio
async def test_keyset_query_uses_cursor_and_limit(make_activity, base_time):
    row = make_activity("B").to_row()
    row["created_at"] = base_time
    conn = FakeConnection(rows=[row])
    gateway = _gateway(conn)
    cursor = ActivityCursor(created_at=base_time, id="C")

    rows = await gateway.query_activities(OpenActivitiesFilter(now=base_time), cursor, 20)

    assert [activity.id for activity in rows] == ["B"]
    query, args = conn.calls[0]
    assert "(created_at, id) < ($2, $3)" in query
    assert query.rstrip().endswith("LIMIT $4")
    assert args == (base_time, base_time, "C", 20)


@pytest.mark.asyncio
async def test_connection_failures_become_transient_errors(make_activity):
    gateway = _gateway(FakeConnection(error=ConnectionRefusedError("down")))
    with pytest.raises(TransientGatewayError) as exc:
        await gateway.get_activity("A")
    assert isinstance(exc.value.__cause__, OSError)


@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_write(make_activity):
    class BrokenStream:
        async def xadd(self, *args, **kwargs):
            raise RuntimeError("redis down")

    gateway = _gateway(FakeConnection(), redis=BrokenStream())
    assert (await gateway.insert_activity(make_activity("A"))).id == "A"
