"""Activity service: feed page loaders plus create/edit/close/join/leave."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

import ulid

from nearby.domain.activities import pagination, policy
from nearby.domain.activities.membership import MembershipService, MembershipSets
from nearby.domain.activities.models import (
	GENDER_VALUES,
	STATUS_CLOSED,
	Activity,
	ActivityCursor,
	ActivityFilter,
	CreatorFilter,
	IdsFilter,
	Membership,
	OpenActivitiesFilter,
	Place,
	parse_timestamp,
)
from nearby.domain.activities.policy import FeedContext, FeedKind
from nearby.domain.exceptions import ValidationError, require_user_id
from nearby.domain.rooms import system_events
from nearby.domain.rooms.diff import InviteChange, InviteEdit, diff_invite_edit, is_provided
from nearby.domain.rooms.models import RoomEvent
from nearby.domain.rooms.service import RoomEventLog
from nearby.gateway import Gateway, get_gateway
from nearby.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 120


@dataclass(slots=True)
class ActivityDraft:
	title: str
	place: Place = field(default_factory=Place)
	gender_pref: str = "any"
	capacity: Optional[int] = None
	start_time: Optional[datetime] = None
	end_time: Optional[datetime] = None
	expires_at: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class FeedPage:
	"""Filtered rows for one view; cursor and has_more come from the unfiltered page."""

	rows: Tuple[Activity, ...]
	next_cursor: Optional[ActivityCursor]
	has_more: bool
	context: FeedContext


@dataclass(slots=True, frozen=True)
class EditResult:
	activity: Activity
	changes: Tuple[InviteChange, ...] = ()
	system_event: Optional[RoomEvent] = None


def _validate_title(title: Optional[str]) -> str:
	text = (title or "").strip()
	if not text or len(text) > TITLE_MAX_LENGTH:
		raise ValidationError("invalid_title")
	return text


def _validate_gender(gender_pref: Optional[str]) -> str:
	value = gender_pref or "any"
	if value not in GENDER_VALUES:
		raise ValidationError("invalid_gender_pref")
	return value


def _validate_capacity(capacity: Optional[int]) -> Optional[int]:
	if capacity is None:
		return None
	if isinstance(capacity, bool) or int(capacity) < 1:
		raise ValidationError("invalid_capacity")
	return int(capacity)


def _validate_schedule(start_time: Optional[datetime], end_time: Optional[datetime]) -> None:
	if start_time is not None and end_time is not None and end_time <= start_time:
		raise ValidationError("invalid_schedule")


def feed_filter(kind: FeedKind, user_id: str, sets: MembershipSets, now: Optional[datetime] = None) -> ActivityFilter:
	if kind is FeedKind.BROWSE:
		return OpenActivitiesFilter(now=now)
	if kind is FeedKind.CREATED:
		return CreatorFilter(creator_id=user_id)
	if kind is FeedKind.JOINED:
		return IdsFilter(ids=sets.joined_ids)
	return IdsFilter(ids=sets.left_ids | sets.joined_ids | sets.created_ids)


class ActivityService:
	def __init__(
		self,
		gateway: Optional[Gateway] = None,
		*,
		memberships: Optional[MembershipService] = None,
		event_log: Optional[RoomEventLog] = None,
		clock: Callable[[], datetime] = policy.utcnow,
	) -> None:
		self._gateway = gateway
		self.event_log = event_log or RoomEventLog(gateway)
		self.memberships = memberships or MembershipService(gateway, self.event_log, clock=clock)
		self.clock = clock

	@property
	def gateway(self) -> Gateway:
		return self._gateway or get_gateway()

	async def get_activity(self, activity_id: str) -> Activity:
		return policy.ensure_found(await self.gateway.get_activity(activity_id))

	def build_context(
		self,
		kind: FeedKind,
		user_id: str,
		sets: MembershipSets,
		*,
		now: Optional[datetime] = None,
	) -> FeedContext:
		return FeedContext(
			kind=kind,
			user_id=user_id,
			joined_ids=sets.joined_ids,
			left_ids=sets.left_ids,
			now=now,
		)

	async def feed_page(
		self,
		kind: FeedKind,
		user_id: Optional[str],
		*,
		cursor: Optional[ActivityCursor] = None,
		limit: int = 50,
		now: Optional[datetime] = None,
		sets: Optional[MembershipSets] = None,
	) -> FeedPage:
		viewer = require_user_id(user_id)
		pagination.validate_limit(limit)
		if sets is None:
			sets = await self.memberships.membership_sets(viewer)
		context = self.build_context(kind, viewer, sets, now=now)
		moment = context.resolve_now()
		page = await pagination.fetch_page(self.gateway, feed_filter(kind, viewer, sets, now), cursor, limit)
		rows = tuple(row for row in page.rows if policy.is_visible_in_feed(row, context, moment))
		obs_metrics.inc_feed_page(kind.value)
		return FeedPage(rows=rows, next_cursor=page.next_cursor, has_more=page.has_more, context=context)

	async def browse_page(self, user_id: Optional[str], **kwargs) -> FeedPage:
		return await self.feed_page(FeedKind.BROWSE, user_id, **kwargs)

	async def created_page(self, user_id: Optional[str], **kwargs) -> FeedPage:
		return await self.feed_page(FeedKind.CREATED, user_id, **kwargs)

	async def joined_page(self, user_id: Optional[str], **kwargs) -> FeedPage:
		return await self.feed_page(FeedKind.JOINED, user_id, **kwargs)

	async def history_page(self, user_id: Optional[str], **kwargs) -> FeedPage:
		return await self.feed_page(FeedKind.HISTORY, user_id, **kwargs)

	async def create_activity(self, user_id: Optional[str], draft: ActivityDraft) -> Activity:
		creator_id = require_user_id(user_id)
		# Naive timestamps are taken as UTC, same as rows read back from storage.
		start_time = parse_timestamp(draft.start_time)
		end_time = parse_timestamp(draft.end_time)
		_validate_schedule(start_time, end_time)
		now = self.clock()
		activity = Activity(
			id=str(ulid.new()),
			creator_id=creator_id,
			title=_validate_title(draft.title),
			created_at=now,
			place=draft.place,
			gender_pref=_validate_gender(draft.gender_pref),
			capacity=_validate_capacity(draft.capacity),
			expires_at=parse_timestamp(draft.expires_at),
			start_time=start_time,
			end_time=end_time,
		)
		stored = await self.gateway.insert_activity(activity)
		await self.memberships.seed_creator(stored.id, creator_id, now)
		obs_metrics.inc_activity_written("create")
		logger.info("activity created", extra={"activity_id": stored.id, "user_id": creator_id})
		return stored

	def _validate_edit(self, before: Activity, edit: InviteEdit) -> None:
		if is_provided(edit.title):
			edit.title = _validate_title(edit.title)
		if is_provided(edit.gender_pref):
			edit.gender_pref = _validate_gender(edit.gender_pref)
		if is_provided(edit.capacity):
			edit.capacity = _validate_capacity(edit.capacity)
		start = edit.start_time if is_provided(edit.start_time) else before.start_time
		end = edit.end_time if is_provided(edit.end_time) else before.end_time
		_validate_schedule(start, end)

	async def _is_joined_member(self, activity_id: str, user_id: str) -> bool:
		membership = await self.gateway.get_membership(activity_id, user_id)
		return membership is not None and membership.is_joined()

	async def edit_activity(
		self,
		user_id: Optional[str],
		activity_id: str,
		edit: InviteEdit,
		*,
		now: Optional[datetime] = None,
	) -> EditResult:
		"""Apply a creator edit and narrate it in the room.

		The room message is gated on the pre-edit state: the author must be a
		joined member and the invite must have been active. The field update is
		applied either way.
		"""
		author = require_user_id(user_id)
		before = await self.get_activity(activity_id)
		policy.ensure_creator(before, author)
		self._validate_edit(before, edit)
		changes = diff_invite_edit(before, edit)
		if not changes:
			return EditResult(activity=before)
		moment = now or self.clock()
		was_active = policy.is_active_activity(before, moment)
		author_joined = await self._is_joined_member(activity_id, author)
		updated = await self.gateway.update_activity(activity_id, edit.to_updates())
		updated = policy.ensure_found(updated)
		obs_metrics.inc_activity_written("edit")
		event: Optional[RoomEvent] = None
		if was_active and author_joined:
			event = await self.event_log.append_system_best_effort(
				activity_id,
				author,
				system_events.InviteUpdatedPayload(changes=tuple(changes)),
				kind="edit_system_event",
			)
		return EditResult(activity=updated, changes=tuple(changes), system_event=event)

	async def close_activity(self, user_id: Optional[str], activity_id: str) -> Activity:
		author = require_user_id(user_id)
		activity = await self.get_activity(activity_id)
		policy.ensure_creator(activity, author)
		if activity.status == STATUS_CLOSED:
			return activity
		updated = policy.ensure_found(await self.gateway.update_activity(activity_id, {"status": STATUS_CLOSED}))
		obs_metrics.inc_activity_written("close")
		if await self._is_joined_member(activity_id, author):
			await self.event_log.append_system_best_effort(
				activity_id,
				author,
				system_events.InviteClosedPayload(),
				kind="close_system_event",
			)
		return updated

	async def join_activity(
		self,
		user_id: Optional[str],
		activity_id: str,
		*,
		now: Optional[datetime] = None,
	) -> Membership:
		member_id = require_user_id(user_id)
		activity = await self.get_activity(activity_id)
		existing = await self.gateway.get_membership(activity_id, member_id)
		if existing is not None and existing.is_joined():
			return existing
		policy.ensure_active(activity, now or self.clock())
		counts = await self.memberships.member_counts([activity_id])
		policy.ensure_capacity_available(activity, counts.get(activity_id, 0))
		return await self.memberships.join(activity_id, member_id)

	async def leave_activity(self, user_id: Optional[str], activity_id: str) -> Membership:
		member_id = require_user_id(user_id)
		await self.get_activity(activity_id)
		return await self.memberships.leave(activity_id, member_id)

	async def list_members(self, activity_id: str) -> List[Membership]:
		await self.get_activity(activity_id)
		return await self.memberships.list_activity_members(activity_id)

	async def activities_by_ids(self, activity_ids: Sequence[str]) -> List[Activity]:
		if not activity_ids:
			return []
		return await self.gateway.query_activities_by_ids(activity_ids)
