"""In-process gateway used by tests and ``GATEWAY_BACKEND=memory``."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import ulid

from nearby.domain.activities.models import (
	STATE_JOINED,
	STATUS_OPEN,
	Activity,
	ActivityCursor,
	ActivityFilter,
	CreatorFilter,
	IdsFilter,
	Membership,
	OpenActivitiesFilter,
	feed_sort_key,
	precedes,
)
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
)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class MemoryGateway:
	def __init__(self, *, dispatcher: Optional[ChangeDispatcher] = None, clock: Callable[[], datetime] = _utcnow) -> None:
		self._lock = asyncio.Lock()
		self.dispatcher = dispatcher or ChangeDispatcher()
		self.clock = clock
		self.activities: Dict[str, Activity] = {}
		self.memberships: Dict[Tuple[str, str], Membership] = {}
		self.events: Dict[str, RoomEvent] = {}

	def reset(self) -> None:
		self.activities.clear()
		self.memberships.clear()
		self.events.clear()
		self.dispatcher.clear()

	def _matches(self, activity: Activity, activity_filter: ActivityFilter) -> bool:
		if isinstance(activity_filter, OpenActivitiesFilter):
			now = activity_filter.now or self.clock()
			if activity.status != STATUS_OPEN:
				return False
			return activity.expires_at is None or activity.expires_at > now
		if isinstance(activity_filter, CreatorFilter):
			return activity.creator_id == activity_filter.creator_id
		if isinstance(activity_filter, IdsFilter):
			return activity.id in activity_filter.ids
		raise TypeError(f"unsupported filter {type(activity_filter).__name__}")

	async def query_activities(
		self,
		activity_filter: ActivityFilter,
		cursor: Optional[ActivityCursor],
		limit: int,
	) -> List[Activity]:
		async with self._lock:
			rows = [
				activity
				for activity in self.activities.values()
				if self._matches(activity, activity_filter) and (cursor is None or precedes(activity, cursor))
			]
		rows.sort(key=feed_sort_key, reverse=True)
		return rows[:limit]

	async def query_activities_by_ids(self, ids: Iterable[str]) -> List[Activity]:
		wanted = {str(i) for i in ids}
		if not wanted:
			return []
		async with self._lock:
			rows = [self.activities[i] for i in wanted if i in self.activities]
		rows.sort(key=feed_sort_key, reverse=True)
		return rows

	async def get_activity(self, activity_id: str) -> Optional[Activity]:
		async with self._lock:
			return self.activities.get(activity_id)

	async def insert_activity(self, activity: Activity) -> Activity:
		async with self._lock:
			self.activities[activity.id] = activity
		self.dispatcher.dispatch(ChangeEvent(TABLE_ACTIVITIES, EVENT_INSERT, new=activity.to_row()))
		return activity

	async def update_activity(self, activity_id: str, updates: Mapping[str, Any]) -> Optional[Activity]:
		async with self._lock:
			current = self.activities.get(activity_id)
			if current is None:
				return None
			row = current.to_row()
			row.update(updates)
			row["id"] = current.id
			updated = Activity.from_row(row)
			self.activities[activity_id] = updated
		self.dispatcher.dispatch(
			ChangeEvent(TABLE_ACTIVITIES, EVENT_UPDATE, new=updated.to_row(), old=current.to_row())
		)
		return updated

	async def upsert_membership(self, membership: Membership) -> Membership:
		key = (membership.activity_id, membership.user_id)
		async with self._lock:
			previous = self.memberships.get(key)
			self.memberships[key] = membership
		self.dispatcher.dispatch(
			ChangeEvent(
				TABLE_MEMBERS,
				EVENT_UPDATE if previous else EVENT_INSERT,
				new=membership.to_row(),
				old=previous.to_row() if previous else None,
			)
		)
		return membership

	async def get_membership(self, activity_id: str, user_id: str) -> Optional[Membership]:
		async with self._lock:
			return self.memberships.get((activity_id, user_id))

	async def list_memberships_for_user(self, user_id: str) -> List[Membership]:
		async with self._lock:
			return [m for m in self.memberships.values() if m.user_id == user_id]

	async def list_activity_members(self, activity_id: str) -> List[Membership]:
		async with self._lock:
			members = [
				m for m in self.memberships.values() if m.activity_id == activity_id and m.state == STATE_JOINED
			]
		members.sort(key=lambda m: (m.joined_at or datetime.min.replace(tzinfo=timezone.utc), m.user_id))
		return members

	async def count_joined_members(self, activity_ids: Iterable[str]) -> Dict[str, int]:
		wanted = {str(i) for i in activity_ids}
		counts = {activity_id: 0 for activity_id in wanted}
		async with self._lock:
			for membership in self.memberships.values():
				if membership.activity_id in wanted and membership.state == STATE_JOINED:
					counts[membership.activity_id] += 1
		return counts

	async def insert_event(
		self,
		activity_id: str,
		user_id: Optional[str],
		event_type: str,
		content: str,
	) -> RoomEvent:
		event = RoomEvent(
			id=str(ulid.new()),
			activity_id=activity_id,
			user_id=user_id,
			type=event_type,
			content=content,
			created_at=self.clock(),
		)
		async with self._lock:
			self.events[event.id] = event
		self.dispatcher.dispatch(ChangeEvent(TABLE_EVENTS, EVENT_INSERT, new=event.to_row()))
		return event

	async def query_events_page(
		self,
		activity_id: str,
		limit: int,
		cursor_created_at: Optional[datetime],
		cursor_id: Optional[str],
		boundary: Optional[datetime],
	) -> List[RoomEvent]:
		async with self._lock:
			rows = [event for event in self.events.values() if event.activity_id == activity_id]
		if cursor_created_at is not None and cursor_id is not None:
			rows = [event for event in rows if (event.created_at, event.id) < (cursor_created_at, cursor_id)]
		if boundary is not None:
			rows = [event for event in rows if event.created_at >= boundary]
		rows.sort(key=lambda event: (event.created_at, event.id), reverse=True)
		return rows[:limit]

	async def get_event(self, event_id: str) -> Optional[RoomEvent]:
		async with self._lock:
			return self.events.get(event_id)

	def subscribe(
		self,
		table: str,
		row_filter: Optional[Mapping[str, str]],
		on_change: ChangeHandler,
	) -> Callable[[], None]:
		return self.dispatcher.subscribe(table, row_filter, on_change)
