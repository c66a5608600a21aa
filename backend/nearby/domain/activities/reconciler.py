"""Feed reconciliation: merge pages and realtime changes into per-view snapshots.

A view's rows are always a tuple sorted by (created_at desc, id desc) with
unique ids. Every operation returns a new tuple; nothing is mutated in place,
so a reader holding the previous snapshot never sees a torn state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from nearby.domain.activities import policy
from nearby.domain.activities.membership import MembershipSets
from nearby.domain.activities.models import (
	ROLE_CREATOR,
	STATE_JOINED,
	STATE_LEFT,
	Activity,
	ActivityCursor,
	feed_sort_key,
)
from nearby.domain.activities.policy import FeedContext, FeedKind
from nearby.domain.activities.service import ActivityService
from nearby.gateway.realtime import EVENT_DELETE, TABLE_ACTIVITIES, TABLE_MEMBERS, ChangeEvent
from nearby.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

Rows = Tuple[Activity, ...]

OUTCOME_UPSERTED = "upserted"
OUTCOME_REMOVED = "removed"
OUTCOME_NOOP = "noop"
OUTCOME_DROPPED = "dropped"


def _sorted(rows: Iterable[Activity]) -> Rows:
	return tuple(sorted(rows, key=feed_sort_key, reverse=True))


def append_page(existing: Sequence[Activity], new_rows: Iterable[Activity]) -> Rows:
	"""Merge by id (incoming wins) and re-sort."""
	merged: Dict[str, Activity] = {row.id: row for row in existing}
	for row in new_rows:
		merged[row.id] = row
	return _sorted(merged.values())


def _event_id(event: ChangeEvent) -> Optional[str]:
	raw = event.row().get("id")
	if raw is None:
		return None
	text = str(raw).strip()
	return text or None


def reconcile_change(
	existing: Sequence[Activity],
	event: ChangeEvent,
	context: FeedContext,
	now: Optional[datetime] = None,
) -> Tuple[Rows, str]:
	"""Like ``apply_realtime_change`` but also reports what happened."""
	current = tuple(existing)
	if event.table != TABLE_ACTIVITIES:
		return current, OUTCOME_NOOP
	activity_id = _event_id(event)
	if activity_id is None:
		logger.warning("dropping realtime change without id", extra={"event_type": event.event_type})
		return current, OUTCOME_DROPPED
	present = any(row.id == activity_id for row in current)

	if event.event_type == EVENT_DELETE:
		if not present:
			return current, OUTCOME_NOOP
		return tuple(row for row in current if row.id != activity_id), OUTCOME_REMOVED

	try:
		snapshot = Activity.from_row(event.new or {})
	except (KeyError, TypeError, ValueError) as exc:
		logger.warning(
			"dropping malformed realtime change",
			extra={"activity_id": activity_id, "event_type": event.event_type, "reason": str(exc)},
		)
		return current, OUTCOME_DROPPED

	moment = now or context.resolve_now()
	if not policy.is_visible_in_feed(snapshot, context, moment):
		if not present:
			return current, OUTCOME_NOOP
		return tuple(row for row in current if row.id != activity_id), OUTCOME_REMOVED

	if snapshot in current:
		return current, OUTCOME_NOOP
	return append_page(current, [snapshot]), OUTCOME_UPSERTED


def apply_realtime_change(
	existing: Sequence[Activity],
	event: ChangeEvent,
	context: FeedContext,
	now: Optional[datetime] = None,
) -> Rows:
	"""Merge one push event into a view. Idempotent; malformed events are no-ops."""
	rows, _outcome = reconcile_change(existing, event, context, now)
	return rows


def refilter(existing: Sequence[Activity], context: FeedContext, now: Optional[datetime] = None) -> Rows:
	moment = now or context.resolve_now()
	return tuple(row for row in existing if policy.is_visible_in_feed(row, context, moment))


@dataclass(slots=True, frozen=True)
class FeedSnapshot:
	rows: Rows = ()
	next_cursor: Optional[ActivityCursor] = None
	has_more: bool = True
	loaded: bool = False


class FeedView:
	"""One open list (browse/created/joined/history) and its realtime subscription.

	Lifetime is explicit: ``open()`` acquires the push subscriptions and
	``dispose()`` releases them synchronously. Page results that resolve after
	``dispose()`` or after a newer ``refresh()`` are discarded.
	"""

	def __init__(
		self,
		kind: FeedKind,
		user_id: str,
		service: Optional[ActivityService] = None,
		*,
		page_size: int = 50,
		clock: Optional[Callable[[], datetime]] = None,
	) -> None:
		self.kind = kind
		self.user_id = user_id
		self.service = service or ActivityService()
		self.page_size = page_size
		self.clock = clock
		self.sets = MembershipSets()
		self.context = FeedContext(kind=kind, user_id=user_id)
		self.snapshot = FeedSnapshot()
		self.generation = 0
		self.disposed = False
		self._unsubscribers: List[Callable[[], None]] = []

	@property
	def rows(self) -> Rows:
		return self.snapshot.rows

	def _now(self) -> Optional[datetime]:
		return self.clock() if self.clock is not None else None

	def open(self) -> "FeedView":
		if self.disposed:
			raise RuntimeError("feed view already disposed")
		if self._unsubscribers:
			return self
		gateway = self.service.gateway
		self._unsubscribers.append(gateway.subscribe(TABLE_ACTIVITIES, None, self.handle_change))
		self._unsubscribers.append(gateway.subscribe(TABLE_MEMBERS, {"user_id": self.user_id}, self.handle_membership_change))
		return self

	def dispose(self) -> None:
		self.generation += 1
		self.disposed = True
		unsubscribers, self._unsubscribers = self._unsubscribers, []
		for unsubscribe in unsubscribers:
			unsubscribe()

	def __enter__(self) -> "FeedView":
		return self.open()

	def __exit__(self, exc_type, exc, tb) -> None:
		self.dispose()

	def _is_current(self, token: int) -> bool:
		if self.disposed or token != self.generation:
			obs_metrics.inc_feed_stale_page(self.kind.value)
			logger.debug("discarding stale feed page", extra={"view": self.kind.value, "generation": token})
			return False
		return True

	async def refresh(self) -> bool:
		"""Reload the first page. Returns False when the result was discarded."""
		self.generation += 1
		token = self.generation
		sets = await self.service.memberships.membership_sets(self.user_id)
		page = await self.service.feed_page(self.kind, self.user_id, limit=self.page_size, now=self._now(), sets=sets)
		if not self._is_current(token):
			return False
		self.sets = sets
		self.context = replace(page.context, now=None)
		self.snapshot = FeedSnapshot(
			rows=_sorted(page.rows),
			next_cursor=page.next_cursor,
			has_more=page.has_more,
			loaded=True,
		)
		return True

	async def load_more(self) -> bool:
		if not self.snapshot.loaded:
			return await self.refresh()
		if not self.snapshot.has_more:
			return False
		token = self.generation
		page = await self.service.feed_page(
			self.kind,
			self.user_id,
			cursor=self.snapshot.next_cursor,
			limit=self.page_size,
			now=self._now(),
			sets=self.sets,
		)
		if not self._is_current(token):
			return False
		self.snapshot = FeedSnapshot(
			rows=append_page(self.snapshot.rows, page.rows),
			next_cursor=page.next_cursor or self.snapshot.next_cursor,
			has_more=page.has_more,
			loaded=True,
		)
		return True

	def handle_change(self, event: ChangeEvent) -> None:
		if self.disposed:
			return
		rows, outcome = reconcile_change(self.snapshot.rows, event, self.context, self._now())
		obs_metrics.inc_realtime_change(self.kind.value, outcome)
		if rows is not self.snapshot.rows:
			self.snapshot = replace(self.snapshot, rows=rows)

	def handle_membership_change(self, event: ChangeEvent) -> None:
		if self.disposed:
			return
		row = event.row()
		activity_id = row.get("activity_id")
		if str(row.get("user_id")) != self.user_id or not activity_id:
			return
		activity_id = str(activity_id)
		joined = set(self.sets.joined_ids)
		left = set(self.sets.left_ids)
		created = set(self.sets.created_ids)
		if event.event_type == EVENT_DELETE:
			joined.discard(activity_id)
			left.discard(activity_id)
		elif row.get("state") == STATE_JOINED:
			joined.add(activity_id)
			left.discard(activity_id)
		elif row.get("state") == STATE_LEFT:
			left.add(activity_id)
			joined.discard(activity_id)
		if row.get("role") == ROLE_CREATOR:
			created.add(activity_id)
		self.update_context(
			MembershipSets(joined_ids=frozenset(joined), left_ids=frozenset(left), created_ids=frozenset(created))
		)

	def update_context(self, sets: MembershipSets) -> None:
		"""Swap in new membership sets and drop rows the view no longer admits.

		Rows that become newly eligible (e.g. a fresh join for the joined view)
		arrive with the next ``refresh()``.
		"""
		self.sets = sets
		self.context = replace(self.context, joined_ids=sets.joined_ids, left_ids=sets.left_ids)
		rows = refilter(self.snapshot.rows, self.context, self._now())
		if rows != self.snapshot.rows:
			self.snapshot = replace(self.snapshot, rows=rows)
