"""Contract between the core and the persistence collaborator."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from nearby.domain.activities.models import Activity, ActivityCursor, ActivityFilter, Membership
from nearby.domain.rooms.models import RoomEvent
from nearby.gateway.realtime import ChangeHandler

Unsubscribe = Callable[[], None]


class Gateway(Protocol):
	"""Relational store plus push channel.

	Every coroutine is a suspension point. Failures surface as
	``TransientGatewayError``; nothing here retries.
	"""

	async def query_activities(
		self,
		activity_filter: ActivityFilter,
		cursor: Optional[ActivityCursor],
		limit: int,
	) -> List[Activity]:
		"""Rows matching the filter, strictly older than ``cursor``, newest first."""
		...

	async def query_activities_by_ids(self, ids: Iterable[str]) -> List[Activity]:
		...

	async def get_activity(self, activity_id: str) -> Optional[Activity]:
		...

	async def insert_activity(self, activity: Activity) -> Activity:
		...

	async def update_activity(self, activity_id: str, updates: Mapping[str, Any]) -> Optional[Activity]:
		"""Apply column updates (row field names) and return the new snapshot."""
		...

	async def upsert_membership(self, membership: Membership) -> Membership:
		...

	async def get_membership(self, activity_id: str, user_id: str) -> Optional[Membership]:
		...

	async def list_memberships_for_user(self, user_id: str) -> List[Membership]:
		...

	async def list_activity_members(self, activity_id: str) -> List[Membership]:
		"""Joined members ordered by ``joined_at``."""
		...

	async def count_joined_members(self, activity_ids: Iterable[str]) -> Dict[str, int]:
		...

	async def insert_event(
		self,
		activity_id: str,
		user_id: Optional[str],
		event_type: str,
		content: str,
	) -> RoomEvent:
		...

	async def query_events_page(
		self,
		activity_id: str,
		limit: int,
		cursor_created_at: Optional[datetime],
		cursor_id: Optional[str],
		boundary: Optional[datetime],
	) -> List[RoomEvent]:
		"""Events strictly older than the cursor and at/after ``boundary``, newest first."""
		...

	async def get_event(self, event_id: str) -> Optional[RoomEvent]:
		...

	def subscribe(
		self,
		table: str,
		row_filter: Optional[Mapping[str, str]],
		on_change: ChangeHandler,
	) -> Unsubscribe:
		"""Register ``on_change`` for pushes on ``table``. Returns a synchronous unsubscribe."""
		...
