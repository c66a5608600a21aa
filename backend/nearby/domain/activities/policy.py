"""Eligibility predicates and guard helpers for activities.

Every predicate takes ``now`` explicitly. Results are never cached: expiry is a
moving target so callers re-evaluate on every page fetch and realtime event.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AbstractSet, FrozenSet, Optional

from nearby.domain.activities.models import STATUS_OPEN, Activity, Membership
from nearby.domain.exceptions import ConflictError, ForbiddenError, NotFoundError


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def is_active_activity(activity: Activity, now: datetime) -> bool:
	if activity.status != STATUS_OPEN:
		return False
	return activity.expires_at is None or activity.expires_at > now


def is_joinable_activity(activity: Activity, joined_ids: AbstractSet[str], now: datetime) -> bool:
	return (
		is_active_activity(activity, now)
		and activity.id not in joined_ids
		and activity.status == STATUS_OPEN
	)


def is_expired_or_closed(activity: Activity, now: datetime) -> bool:
	if activity.status != STATUS_OPEN:
		return True
	return activity.expires_at is not None and activity.expires_at <= now


class FeedKind(str, Enum):
	BROWSE = "browse"
	CREATED = "created"
	JOINED = "joined"
	HISTORY = "history"


@dataclass(slots=True, frozen=True)
class FeedContext:
	"""Ambient inputs for view predicates. ``now=None`` evaluates at call time."""

	kind: FeedKind
	user_id: str
	joined_ids: FrozenSet[str] = field(default_factory=frozenset)
	left_ids: FrozenSet[str] = field(default_factory=frozenset)
	now: Optional[datetime] = None

	def resolve_now(self) -> datetime:
		return self.now if self.now is not None else utcnow()


def is_visible_in_feed(activity: Activity, context: FeedContext, now: Optional[datetime] = None) -> bool:
	moment = now or context.resolve_now()
	own = activity.creator_id == context.user_id
	if context.kind is FeedKind.BROWSE:
		return not own and is_joinable_activity(activity, context.joined_ids, moment)
	if context.kind is FeedKind.CREATED:
		return own
	if context.kind is FeedKind.JOINED:
		return (
			activity.id in context.joined_ids
			and not own
			and is_active_activity(activity, moment)
		)
	if context.kind is FeedKind.HISTORY:
		if activity.id in context.left_ids:
			return True
		involved = own or activity.id in context.joined_ids
		return involved and is_expired_or_closed(activity, moment)
	return False


def ensure_found(activity: Optional[Activity]) -> Activity:
	if activity is None:
		raise NotFoundError("activity_not_found")
	return activity


def ensure_creator(activity: Activity, user_id: str) -> None:
	if activity.creator_id != user_id:
		raise ForbiddenError("not_creator")


def ensure_active(activity: Activity, now: datetime) -> None:
	if not is_active_activity(activity, now):
		raise ConflictError("activity_inactive")


def ensure_capacity_available(activity: Activity, joined_count: int) -> None:
	if activity.capacity is not None and joined_count >= activity.capacity:
		raise ConflictError("capacity_reached")


def ensure_joined_member(membership: Optional[Membership]) -> Membership:
	if membership is None or not membership.is_joined():
		raise ForbiddenError("not_member")
	return membership
