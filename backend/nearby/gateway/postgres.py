"""asyncpg-backed gateway. Writes are mirrored onto the Redis change stream."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import asyncpg
import ulid

from nearby.domain.activities.models import (
	Activity,
	ActivityCursor,
	ActivityFilter,
	CreatorFilter,
	IdsFilter,
	Membership,
	OpenActivitiesFilter,
	parse_timestamp,
)
from nearby.domain.exceptions import TransientGatewayError
from nearby.domain.rooms.models import RoomEvent
from nearby.gateway.realtime import (
	EVENT_INSERT,
	EVENT_UPDATE,
	TABLE_ACTIVITIES,
	TABLE_EVENTS,
	TABLE_MEMBERS,
	ChangeDispatcher,
	ChangeEvent,
	ChangeHandler,
	RedisStream,
	publish_change,
)
from nearby.infra.postgres import get_pool
from nearby.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_UPDATABLE_COLUMNS = {
	"title_text",
	"place_text",
	"place_name",
	"place_address",
	"lat",
	"lng",
	"place_id",
	"location_source",
	"gender_pref",
	"capacity",
	"status",
	"expires_at",
	"start_time",
	"end_time",
}
_TIMESTAMP_COLUMNS = {"expires_at", "start_time", "end_time"}


class PostgresGateway:
	def __init__(
		self,
		*,
		redis: Optional[RedisStream],
		dispatcher: ChangeDispatcher,
		stream_key: str,
		stream_maxlen: Optional[int] = None,
		pool_factory: Callable[[], Awaitable[asyncpg.Pool]] = get_pool,
	) -> None:
		self._redis = redis
		self.dispatcher = dispatcher
		self._stream_key = stream_key
		self._stream_maxlen = stream_maxlen
		self._pool_factory = pool_factory

	@contextlib.asynccontextmanager
	async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
		try:
			pool = await self._pool_factory()
			async with pool.acquire() as conn:
				yield conn
		except _TRANSIENT_ERRORS as exc:
			raise TransientGatewayError() from exc

	async def _publish(self, event: ChangeEvent) -> None:
		if self._redis is None:
			return
		try:
			await publish_change(self._redis, self._stream_key, event, maxlen=self._stream_maxlen)
		except Exception:
			obs_metrics.inc_side_effect_failure("change_publish")
			logger.exception("failed to publish change", extra={"table": event.table, "event_type": event.event_type})

	async def query_activities(
		self,
		activity_filter: ActivityFilter,
		cursor: Optional[ActivityCursor],
		limit: int,
	) -> List[Activity]:
		clauses: List[str] = []
		params: List[Any] = []
		if isinstance(activity_filter, OpenActivitiesFilter):
			params.append(activity_filter.now)
			clauses.append(f"status = 'open' AND (expires_at IS NULL OR expires_at > COALESCE(${len(params)}::timestamptz, now()))")
		elif isinstance(activity_filter, CreatorFilter):
			params.append(activity_filter.creator_id)
			clauses.append(f"creator_id = ${len(params)}")
		elif isinstance(activity_filter, IdsFilter):
			params.append(sorted(activity_filter.ids))
			clauses.append(f"id = ANY(${len(params)}::text[])")
		else:
			raise TypeError(f"unsupported filter {type(activity_filter).__name__}")
		if cursor is not None:
			params.extend([cursor.created_at, cursor.id])
			clauses.append(f"(created_at, id) < (${len(params) - 1}, ${len(params)})")
		params.append(limit)
		query = (
			"SELECT * FROM activities WHERE "
			+ " AND ".join(clauses)
			+ f" ORDER BY created_at DESC, id DESC LIMIT ${len(params)}"
		)
		async with self._connection() as conn:
			rows = await conn.fetch(query, *params)
		return [Activity.from_row(dict(row)) for row in rows]

	async def query_activities_by_ids(self, ids: Iterable[str]) -> List[Activity]:
		wanted = sorted({str(i) for i in ids})
		if not wanted:
			return []
		async with self._connection() as conn:
			rows = await conn.fetch(
				"SELECT * FROM activities WHERE id = ANY($1::text[]) ORDER BY created_at DESC, id DESC",
				wanted,
			)
		return [Activity.from_row(dict(row)) for row in rows]

	async def get_activity(self, activity_id: str) -> Optional[Activity]:
		async with self._connection() as conn:
			row = await conn.fetchrow("SELECT * FROM activities WHERE id = $1", activity_id)
		return Activity.from_row(dict(row)) if row else None

	async def insert_activity(self, activity: Activity) -> Activity:
		row = activity.to_row()
		async with self._connection() as conn:
			await conn.execute(
				"""
				INSERT INTO activities (
					id, creator_id, title_text, place_text, place_name, place_address, lat, lng,
					place_id, location_source, gender_pref, capacity, status,
					expires_at, start_time, end_time, created_at
				)
				VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,$14,$15,$16,$17)
				""",
				activity.id,
				activity.creator_id,
				activity.title,
				activity.place.text,
				activity.place.name,
				activity.place.address,
				activity.place.lat,
				activity.place.lng,
				activity.place.place_id,
				activity.place.location_source,
				activity.gender_pref,
				activity.capacity,
				activity.status,
				activity.expires_at,
				activity.start_time,
				activity.end_time,
				activity.created_at,
			)
		await self._publish(ChangeEvent(TABLE_ACTIVITIES, EVENT_INSERT, new=row))
		return activity

	async def update_activity(self, activity_id: str, updates: Mapping[str, Any]) -> Optional[Activity]:
		columns = [column for column in updates if column in _UPDATABLE_COLUMNS]
		async with self._connection() as conn:
			async with conn.transaction():
				before = await conn.fetchrow("SELECT * FROM activities WHERE id = $1 FOR UPDATE", activity_id)
				if before is None:
					return None
				if not columns:
					return Activity.from_row(dict(before))
				values = [
					parse_timestamp(updates[column]) if column in _TIMESTAMP_COLUMNS else updates[column]
					for column in columns
				]
				assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
				row = await conn.fetchrow(
					f"UPDATE activities SET {assignments} WHERE id = $1 RETURNING *",
					activity_id,
					*values,
				)
		old = Activity.from_row(dict(before))
		updated = Activity.from_row(dict(row))
		await self._publish(ChangeEvent(TABLE_ACTIVITIES, EVENT_UPDATE, new=updated.to_row(), old=old.to_row()))
		return updated

	async def upsert_membership(self, membership: Membership) -> Membership:
		async with self._connection() as conn:
			row = await conn.fetchrow(
				"""
				INSERT INTO activity_members (activity_id, user_id, role, state, joined_at, left_at)
				VALUES ($1, $2, $3, $4, COALESCE($5, now()), $6)
				ON CONFLICT (activity_id, user_id) DO UPDATE
				SET role = EXCLUDED.role,
					state = EXCLUDED.state,
					joined_at = EXCLUDED.joined_at,
					left_at = EXCLUDED.left_at
				RETURNING *, (xmax = 0) AS inserted
				""",
				membership.activity_id,
				membership.user_id,
				membership.role,
				membership.state,
				membership.joined_at,
				membership.left_at,
			)
		stored = Membership.from_row(dict(row))
		await self._publish(
			ChangeEvent(TABLE_MEMBERS, EVENT_INSERT if row["inserted"] else EVENT_UPDATE, new=stored.to_row())
		)
		return stored

	async def get_membership(self, activity_id: str, user_id: str) -> Optional[Membership]:
		async with self._connection() as conn:
			row = await conn.fetchrow(
				"SELECT * FROM activity_members WHERE activity_id = $1 AND user_id = $2",
				activity_id,
				user_id,
			)
		return Membership.from_row(dict(row)) if row else None

	async def list_memberships_for_user(self, user_id: str) -> List[Membership]:
		async with self._connection() as conn:
			rows = await conn.fetch("SELECT * FROM activity_members WHERE user_id = $1", user_id)
		return [Membership.from_row(dict(row)) for row in rows]

	async def list_activity_members(self, activity_id: str) -> List[Membership]:
		async with self._connection() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM activity_members
				WHERE activity_id = $1 AND state = 'joined'
				ORDER BY joined_at ASC, user_id ASC
				""",
				activity_id,
			)
		return [Membership.from_row(dict(row)) for row in rows]

	async def count_joined_members(self, activity_ids: Iterable[str]) -> Dict[str, int]:
		wanted = sorted({str(i) for i in activity_ids})
		counts = {activity_id: 0 for activity_id in wanted}
		if not wanted:
			return counts
		async with self._connection() as conn:
			rows = await conn.fetch(
				"""
				SELECT activity_id, COUNT(*) AS joined
				FROM activity_members
				WHERE activity_id = ANY($1::text[]) AND state = 'joined'
				GROUP BY activity_id
				""",
				wanted,
			)
		for row in rows:
			counts[str(row["activity_id"])] = int(row["joined"])
		return counts

	async def insert_event(
		self,
		activity_id: str,
		user_id: Optional[str],
		event_type: str,
		content: str,
	) -> RoomEvent:
		async with self._connection() as conn:
			row = await conn.fetchrow(
				"""
				INSERT INTO room_events (id, activity_id, user_id, type, content)
				VALUES ($1, $2, $3, $4, $5)
				RETURNING *
				""",
				str(ulid.new()),
				activity_id,
				user_id,
				event_type,
				content,
			)
		event = RoomEvent.from_row(dict(row))
		await self._publish(ChangeEvent(TABLE_EVENTS, EVENT_INSERT, new=event.to_row()))
		return event

	async def query_events_page(
		self,
		activity_id: str,
		limit: int,
		cursor_created_at: Optional[datetime],
		cursor_id: Optional[str],
		boundary: Optional[datetime],
	) -> List[RoomEvent]:
		async with self._connection() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM room_events
				WHERE activity_id = $1
					AND ($2::timestamptz IS NULL OR $3::text IS NULL OR (created_at, id) < ($2, $3))
					AND ($4::timestamptz IS NULL OR created_at >= $4)
				ORDER BY created_at DESC, id DESC
				LIMIT $5
				""",
				activity_id,
				cursor_created_at,
				cursor_id,
				boundary,
				limit,
			)
		return [RoomEvent.from_row(dict(row)) for row in rows]

	async def get_event(self, event_id: str) -> Optional[RoomEvent]:
		async with self._connection() as conn:
			row = await conn.fetchrow("SELECT * FROM room_events WHERE id = $1", event_id)
		return RoomEvent.from_row(dict(row)) if row else None

	def subscribe(
		self,
		table: str,
		row_filter: Optional[Mapping[str, str]],
		on_change: ChangeHandler,
	) -> Callable[[], None]:
		return self.dispatcher.subscribe(table, row_filter, on_change)
