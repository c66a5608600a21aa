"""Membership model: join/leave transitions per (activity, user)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from nearby.domain.activities import policy
from nearby.domain.activities.models import (
	ROLE_CREATOR,
	ROLE_MEMBER,
	STATE_JOINED,
	STATE_LEFT,
	Membership,
)
from nearby.domain.exceptions import NotFoundError, require_user_id
from nearby.domain.rooms import system_events
from nearby.domain.rooms.service import RoomEventLog
from nearby.gateway import Gateway, get_gateway
from nearby.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MembershipSets:
	joined_ids: FrozenSet[str] = field(default_factory=frozenset)
	left_ids: FrozenSet[str] = field(default_factory=frozenset)
	created_ids: FrozenSet[str] = field(default_factory=frozenset)

	@classmethod
	def from_rows(cls, rows: Iterable[Membership]) -> "MembershipSets":
		joined: set[str] = set()
		left: set[str] = set()
		created: set[str] = set()
		for row in rows:
			if row.state == STATE_JOINED:
				joined.add(row.activity_id)
			elif row.state == STATE_LEFT:
				left.add(row.activity_id)
			if row.role == ROLE_CREATOR:
				created.add(row.activity_id)
		return cls(joined_ids=frozenset(joined), left_ids=frozenset(left), created_ids=frozenset(created))


class MembershipService:
	def __init__(
		self,
		gateway: Optional[Gateway] = None,
		event_log: Optional[RoomEventLog] = None,
		*,
		clock: Callable[[], datetime] = policy.utcnow,
	) -> None:
		self._gateway = gateway
		self.event_log = event_log or RoomEventLog(gateway)
		self.clock = clock

	@property
	def gateway(self) -> Gateway:
		return self._gateway or get_gateway()

	async def get_membership(self, user_id: Optional[str]) -> List[Membership]:
		"""All relationship rows for ``user_id``."""
		return await self.gateway.list_memberships_for_user(require_user_id(user_id))

	async def membership_sets(self, user_id: Optional[str]) -> MembershipSets:
		return MembershipSets.from_rows(await self.get_membership(user_id))

	async def join(self, activity_id: str, user_id: Optional[str]) -> Membership:
		"""Upsert a joined row and narrate the transition in the room.

		The creator keeps its role. The system event is written only when the
		prior state was not already joined, and its failure never fails the join.
		"""
		member_id = require_user_id(user_id)
		existing = await self.gateway.get_membership(activity_id, member_id)
		role = ROLE_CREATOR if existing is not None and existing.is_creator() else ROLE_MEMBER
		membership = Membership(
			activity_id=activity_id,
			user_id=member_id,
			role=role,
			state=STATE_JOINED,
			joined_at=self.clock(),
			left_at=existing.left_at if existing is not None else None,
		)
		stored = await self.gateway.upsert_membership(membership)
		obs_metrics.inc_membership("join")
		if existing is None or not existing.is_joined():
			await self.event_log.append_system_best_effort(
				activity_id,
				member_id,
				system_events.JoinedPayload(),
				kind="join_system_event",
			)
		return stored

	async def leave(self, activity_id: str, user_id: Optional[str]) -> Membership:
		# no room.system.left event here; leaving is silent in the room
		member_id = require_user_id(user_id)
		existing = await self.gateway.get_membership(activity_id, member_id)
		if existing is None:
			raise NotFoundError("not_member")
		if not existing.is_joined():
			return existing
		stored = await self.gateway.upsert_membership(replace(existing, state=STATE_LEFT, left_at=self.clock()))
		obs_metrics.inc_membership("leave")
		return stored

	async def seed_creator(self, activity_id: str, creator_id: str, joined_at: datetime) -> Membership:
		membership = Membership(
			activity_id=activity_id,
			user_id=creator_id,
			role=ROLE_CREATOR,
			state=STATE_JOINED,
			joined_at=joined_at,
		)
		stored = await self.gateway.upsert_membership(membership)
		obs_metrics.inc_membership("seed_creator")
		return stored

	async def list_activity_members(self, activity_id: str) -> List[Membership]:
		return await self.gateway.list_activity_members(activity_id)

	async def member_counts(self, activity_ids: Iterable[str]) -> Dict[str, int]:
		ids = [str(activity_id) for activity_id in activity_ids]
		if not ids:
			return {}
		return await self.gateway.count_joined_members(ids)
