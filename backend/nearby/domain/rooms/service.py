"""Room event log and room read/write service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from nearby.domain.activities import policy
from nearby.domain.activities.models import STATUS_OPEN, Activity, Membership
from nearby.domain.exceptions import ConflictError, NotFoundError, ValidationError, require_user_id
from nearby.domain.rooms import models, system_events
from nearby.gateway import Gateway, get_gateway
from nearby.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def compute_room_state(activity: Optional[Activity], now: Optional[datetime] = None) -> models.RoomState:
	"""Closed wins over expired when both hold."""
	moment = now or policy.utcnow()
	is_closed = activity is not None and activity.status != STATUS_OPEN
	is_expired = activity is not None and activity.expires_at is not None and activity.expires_at <= moment
	label: Optional[str] = None
	if is_closed:
		label = "closed"
	elif is_expired:
		label = "expired"
	return models.RoomState(
		is_closed=is_closed,
		is_expired=is_expired,
		is_read_only=is_closed or is_expired,
		label=label,
	)


def visibility_boundary(membership: Membership) -> Optional[datetime]:
	"""Earliest event time a member may read. Rejoined members start at their current join."""
	if membership.left_at is not None:
		return membership.joined_at
	return None


class RoomEventLog:
	def __init__(self, gateway: Optional[Gateway] = None) -> None:
		self._gateway = gateway

	@property
	def gateway(self) -> Gateway:
		return self._gateway or get_gateway()

	async def append_event(
		self,
		activity_id: str,
		author_id: Optional[str],
		event_type: str,
		content: str,
	) -> models.RoomEvent:
		if event_type not in models.EVENT_TYPES:
			raise ValidationError("invalid_event_type")
		if event_type == models.EVENT_SYSTEM and not system_events.is_valid_system_content(content):
			raise ValidationError("invalid_system_content")
		if event_type == models.EVENT_QUICK and content not in models.QUICK_CODES:
			raise ValidationError("invalid_quick_code")
		event = await self.gateway.insert_event(activity_id, author_id, event_type, content)
		obs_metrics.inc_room_event(event_type)
		return event

	async def append_system(
		self,
		activity_id: str,
		author_id: Optional[str],
		payload: system_events.SystemPayload,
	) -> models.RoomEvent:
		content = system_events.encode_system_content(payload)
		return await self.append_event(activity_id, author_id, models.EVENT_SYSTEM, content)

	async def append_system_best_effort(
		self,
		activity_id: str,
		author_id: Optional[str],
		payload: system_events.SystemPayload,
		*,
		kind: str,
	) -> Optional[models.RoomEvent]:
		"""Append a system event after a primary write already succeeded; failures are logged only."""
		try:
			return await self.append_system(activity_id, author_id, payload)
		except Exception:
			obs_metrics.inc_side_effect_failure(kind)
			logger.exception(
				"system event insert failed",
				extra={"activity_id": activity_id, "user_id": author_id, "kind": kind},
			)
			return None

	async def get_events_page(
		self,
		activity_id: str,
		limit: int,
		cursor: Optional[models.RoomEventCursor] = None,
		boundary: Optional[datetime] = None,
	) -> models.EventPage:
		"""Oldest-first page of events strictly older than ``cursor``.

		Rows are fetched newest-first and reversed; ``next_cursor`` points at the
		oldest row so the following page continues further back in time.
		"""
		if limit < 1:
			raise ValueError("invalid_limit")
		rows = await self.gateway.query_events_page(
			activity_id,
			limit,
			cursor.created_at if cursor else None,
			cursor.id if cursor else None,
			boundary,
		)
		raw_count = len(rows)
		newest_first = sorted(rows, key=lambda event: (event.created_at, event.id), reverse=True)[:limit]
		events = tuple(reversed(newest_first))
		next_cursor = models.RoomEventCursor.before(events[0]) if events else None
		return models.EventPage(events=events, next_cursor=next_cursor, has_more=raw_count == limit)


class RoomService:
	def __init__(self, gateway: Optional[Gateway] = None, event_log: Optional[RoomEventLog] = None) -> None:
		self._gateway = gateway
		self.event_log = event_log or RoomEventLog(gateway)

	@property
	def gateway(self) -> Gateway:
		return self._gateway or get_gateway()

	async def _load_activity(self, activity_id: str) -> Activity:
		return policy.ensure_found(await self.gateway.get_activity(activity_id))

	async def _require_member(self, activity_id: str, user_id: str) -> Membership:
		membership = await self.gateway.get_membership(activity_id, user_id)
		return policy.ensure_joined_member(membership)

	async def state(self, activity_id: str, *, now: Optional[datetime] = None) -> models.RoomState:
		activity = await self._load_activity(activity_id)
		return compute_room_state(activity, now)

	async def history(
		self,
		user_id: Optional[str],
		activity_id: str,
		*,
		cursor: Optional[models.RoomEventCursor] = None,
		limit: int = 50,
	) -> models.EventPage:
		reader = require_user_id(user_id)
		await self._load_activity(activity_id)
		membership = await self._require_member(activity_id, reader)
		return await self.event_log.get_events_page(activity_id, limit, cursor, visibility_boundary(membership))

	async def get_event(self, user_id: Optional[str], event_id: str) -> models.RoomEvent:
		reader = require_user_id(user_id)
		event = await self.gateway.get_event(event_id)
		if event is None:
			raise NotFoundError("event_not_found")
		membership = await self._require_member(event.activity_id, reader)
		boundary = visibility_boundary(membership)
		if boundary is not None and event.created_at < boundary:
			raise NotFoundError("event_not_found")
		return event

	async def _ensure_writable(self, activity_id: str, user_id: str, now: Optional[datetime]) -> None:
		activity = await self._load_activity(activity_id)
		await self._require_member(activity_id, user_id)
		if compute_room_state(activity, now).is_read_only:
			raise ConflictError("room_read_only")

	async def send_chat(
		self,
		user_id: Optional[str],
		activity_id: str,
		text: str,
		*,
		now: Optional[datetime] = None,
	) -> models.RoomEvent:
		author = require_user_id(user_id)
		body = (text or "").strip()
		if not body or len(body) > models.CHAT_MAX_LENGTH:
			raise ValidationError("invalid_chat_text")
		await self._ensure_writable(activity_id, author, now)
		return await self.event_log.append_event(activity_id, author, models.EVENT_CHAT, body)

	async def send_quick(
		self,
		user_id: Optional[str],
		activity_id: str,
		code: str,
		*,
		now: Optional[datetime] = None,
	) -> models.RoomEvent:
		author = require_user_id(user_id)
		if code not in models.QUICK_CODES:
			raise ValidationError("invalid_quick_code")
		await self._ensure_writable(activity_id, author, now)
		return await self.event_log.append_event(activity_id, author, models.EVENT_QUICK, code)
