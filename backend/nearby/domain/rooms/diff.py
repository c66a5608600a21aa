"""Invite edit diffing.

Edit payload fields are three-state: ``NOT_PROVIDED`` (leave alone), ``None``
(explicitly clear) or a value. Collapsing the first two would turn "no expiry
submitted" into "expiry cleared".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from nearby.domain.activities.models import Activity, Place, parse_timestamp


class _NotProvided:
	_instance: Optional["_NotProvided"] = None

	def __new__(cls) -> "_NotProvided":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __repr__(self) -> str:
		return "NOT_PROVIDED"

	def __bool__(self) -> bool:
		return False


NOT_PROVIDED: Any = _NotProvided()

CHANGE_KINDS = ("title", "place", "gender", "capacity", "start_time", "end_time", "expires")
EXPIRES_NEVER = "never"
EXPIRES_DATETIME = "datetime"


def is_provided(value: Any) -> bool:
	return value is not NOT_PROVIDED


def _iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value is not None else None


@dataclass(slots=True, frozen=True)
class InviteChange:
	kind: str
	from_value: Any = None
	to_value: Any = None
	to_mode: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		if self.kind == "expires":
			return {"kind": "expires", "toMode": self.to_mode, "iso": self.to_value}
		return {"kind": self.kind, "from": self.from_value, "to": self.to_value}

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> "InviteChange":
		if not isinstance(data, Mapping):
			raise ValueError("invalid_change")
		kind = data.get("kind")
		if kind not in CHANGE_KINDS:
			raise ValueError("invalid_change_kind")
		if kind == "expires":
			to_mode = data.get("toMode")
			if to_mode not in (EXPIRES_NEVER, EXPIRES_DATETIME):
				raise ValueError("invalid_expires_mode")
			return cls(kind="expires", to_value=data.get("iso", data.get("to")), to_mode=to_mode)
		return cls(kind=kind, from_value=data.get("from"), to_value=data.get("to"))


@dataclass(slots=True)
class InviteEdit:
	"""Creator-submitted edit. Each field is NOT_PROVIDED, None, or a value."""

	title: Union[str, None, Any] = NOT_PROVIDED
	place: Union[Place, None, Any] = NOT_PROVIDED
	gender_pref: Union[str, None, Any] = NOT_PROVIDED
	capacity: Union[int, None, Any] = NOT_PROVIDED
	start_time: Union[datetime, None, Any] = NOT_PROVIDED
	end_time: Union[datetime, None, Any] = NOT_PROVIDED
	expires_at: Union[datetime, None, Any] = NOT_PROVIDED

	def to_updates(self) -> Dict[str, Any]:
		"""Row column updates for the provided fields only."""
		updates: Dict[str, Any] = {}
		if is_provided(self.title):
			updates["title_text"] = self.title
		if is_provided(self.place):
			place = self.place or Place()
			updates.update(
				{
					"place_name": place.name,
					"place_address": place.address,
					"place_text": place.text,
					"lat": place.lat,
					"lng": place.lng,
					"place_id": place.place_id,
					"location_source": place.location_source,
				}
			)
		if is_provided(self.gender_pref):
			updates["gender_pref"] = self.gender_pref or "any"
		if is_provided(self.capacity):
			updates["capacity"] = self.capacity
		for column in ("start_time", "end_time", "expires_at"):
			value = getattr(self, column)
			if is_provided(value):
				updates[column] = parse_timestamp(value)
		return updates


def _place_label(place: Optional[Place]) -> Optional[str]:
	return place.label() if place is not None else None


def diff_invite_edit(before: Activity, edit: InviteEdit) -> List[InviteChange]:
	"""One change per differing field, in a fixed field order."""
	changes: List[InviteChange] = []

	if is_provided(edit.title) and (edit.title or None) != (before.title or None):
		changes.append(InviteChange("title", before.title or None, edit.title or None))

	if is_provided(edit.place):
		old_label = _place_label(before.place)
		new_label = _place_label(edit.place)
		if old_label != new_label:
			changes.append(InviteChange("place", old_label, new_label))

	if is_provided(edit.gender_pref):
		new_gender = edit.gender_pref or "any"
		if new_gender != before.gender_pref:
			changes.append(InviteChange("gender", before.gender_pref, new_gender))

	if is_provided(edit.capacity) and edit.capacity != before.capacity:
		changes.append(InviteChange("capacity", before.capacity, edit.capacity))

	for kind in ("start_time", "end_time"):
		value = getattr(edit, kind)
		if not is_provided(value):
			continue
		old_value = getattr(before, kind)
		new_value = parse_timestamp(value)
		if old_value != new_value:
			changes.append(InviteChange(kind, _iso(old_value), _iso(new_value)))

	if is_provided(edit.expires_at):
		new_expiry = parse_timestamp(edit.expires_at)
		if new_expiry is None:
			if before.expires_at is not None:
				changes.append(InviteChange("expires", to_mode=EXPIRES_NEVER))
		elif new_expiry != before.expires_at:
			changes.append(InviteChange("expires", to_value=new_expiry.isoformat(), to_mode=EXPIRES_DATETIME))

	return changes
