"""Domain models for activities (invites) and memberships."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Union


ActivityStatus = str
GenderPref = str
MembershipRole = str
MembershipState = str

STATUS_OPEN: ActivityStatus = "open"
STATUS_CLOSED: ActivityStatus = "closed"
STATUS_VALUES = (STATUS_OPEN, STATUS_CLOSED)

GENDER_VALUES = ("any", "female", "male")

ROLE_CREATOR: MembershipRole = "creator"
ROLE_MEMBER: MembershipRole = "member"

STATE_JOINED: MembershipState = "joined"
STATE_LEFT: MembershipState = "left"


def parse_timestamp(value: Any) -> Optional[datetime]:
	"""Coerce a row value (datetime or ISO string) into an aware UTC datetime."""
	if value is None or value == "":
		return None
	if isinstance(value, datetime):
		parsed = value
	elif isinstance(value, str):
		text = value.strip()
		if text.endswith("Z"):
			text = f"{text[:-1]}+00:00"
		parsed = datetime.fromisoformat(text)
	else:
		raise ValueError(f"invalid_timestamp:{type(value).__name__}")
	if parsed.tzinfo is None:
		return parsed.replace(tzinfo=timezone.utc)
	return parsed.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value is not None else None


def _optional_str(value: Any) -> Optional[str]:
	if value is None:
		return None
	text = str(value)
	return text


def _optional_float(value: Any) -> Optional[float]:
	if value is None or value == "":
		return None
	return float(value)


@dataclass(slots=True, frozen=True)
class Place:
	name: Optional[str] = None
	address: Optional[str] = None
	text: Optional[str] = None
	lat: Optional[float] = None
	lng: Optional[float] = None
	place_id: Optional[str] = None
	location_source: Optional[str] = None

	def label(self) -> Optional[str]:
		"""Resolved "name / address" text, falling back to the free-text place."""
		parts = [part.strip() for part in (self.name, self.address) if part and part.strip()]
		if parts:
			return " / ".join(parts)
		if self.text and self.text.strip():
			return self.text.strip()
		return None


@dataclass(slots=True, frozen=True)
class Activity:
	"""Snapshot of an invite row."""

	id: str
	creator_id: str
	title: str
	created_at: datetime
	status: ActivityStatus = STATUS_OPEN
	place: Place = field(default_factory=Place)
	gender_pref: GenderPref = "any"
	capacity: Optional[int] = None
	expires_at: Optional[datetime] = None
	start_time: Optional[datetime] = None
	end_time: Optional[datetime] = None

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "Activity":
		"""Build from a store row or push payload. Raises ValueError when the row is unusable."""
		activity_id = row.get("id")
		if activity_id is None or str(activity_id).strip() == "":
			raise ValueError("missing_id")
		created_at = parse_timestamp(row.get("created_at"))
		if created_at is None:
			raise ValueError("missing_created_at")
		capacity = row.get("capacity")
		return cls(
			id=str(activity_id),
			creator_id=str(row.get("creator_id") or ""),
			title=str(row.get("title_text") or ""),
			created_at=created_at,
			status=str(row.get("status") or STATUS_OPEN),
			place=Place(
				name=_optional_str(row.get("place_name")),
				address=_optional_str(row.get("place_address")),
				text=_optional_str(row.get("place_text")),
				lat=_optional_float(row.get("lat")),
				lng=_optional_float(row.get("lng")),
				place_id=_optional_str(row.get("place_id")),
				location_source=_optional_str(row.get("location_source")),
			),
			gender_pref=str(row.get("gender_pref") or "any"),
			capacity=int(capacity) if capacity is not None else None,
			expires_at=parse_timestamp(row.get("expires_at")),
			start_time=parse_timestamp(row.get("start_time")),
			end_time=parse_timestamp(row.get("end_time")),
		)

	def to_row(self) -> dict:
		"""Flat, JSON-safe row shape shared by the store, the change feed and the API."""
		return {
			"id": self.id,
			"creator_id": self.creator_id,
			"title_text": self.title,
			"place_text": self.place.text,
			"place_name": self.place.name,
			"place_address": self.place.address,
			"lat": self.place.lat,
			"lng": self.place.lng,
			"place_id": self.place.place_id,
			"location_source": self.place.location_source,
			"gender_pref": self.gender_pref,
			"capacity": self.capacity,
			"status": self.status,
			"expires_at": _iso(self.expires_at),
			"start_time": _iso(self.start_time),
			"end_time": _iso(self.end_time),
			"created_at": _iso(self.created_at),
		}


@dataclass(slots=True, frozen=True)
class Membership:
	activity_id: str
	user_id: str
	role: MembershipRole
	state: MembershipState
	joined_at: Optional[datetime] = None
	left_at: Optional[datetime] = None

	def is_joined(self) -> bool:
		return self.state == STATE_JOINED

	def is_creator(self) -> bool:
		return self.role == ROLE_CREATOR

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "Membership":
		return cls(
			activity_id=str(row["activity_id"]),
			user_id=str(row["user_id"]),
			role=str(row.get("role") or ROLE_MEMBER),
			state=str(row.get("state") or STATE_JOINED),
			joined_at=parse_timestamp(row.get("joined_at")),
			left_at=parse_timestamp(row.get("left_at")),
		)

	def to_row(self) -> dict:
		return {
			"activity_id": self.activity_id,
			"user_id": self.user_id,
			"role": self.role,
			"state": self.state,
			"joined_at": _iso(self.joined_at),
			"left_at": _iso(self.left_at),
		}


@dataclass(slots=True, frozen=True)
class ActivityCursor:
	"""Position marker: the (created_at, id) of the last row of a descending page."""

	created_at: datetime
	id: str

	@classmethod
	def after(cls, activity: Activity) -> "ActivityCursor":
		return cls(created_at=activity.created_at, id=activity.id)


@dataclass(slots=True, frozen=True)
class OpenActivitiesFilter:
	"""status = open and not yet expired at query time (``now`` pins the clock)."""

	now: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class CreatorFilter:
	creator_id: str


@dataclass(slots=True, frozen=True)
class IdsFilter:
	ids: FrozenSet[str]

	@classmethod
	def of(cls, ids: Iterable[str]) -> "IdsFilter":
		return cls(ids=frozenset(str(i) for i in ids))


ActivityFilter = Union[OpenActivitiesFilter, CreatorFilter, IdsFilter]


def feed_sort_key(activity: Activity) -> tuple[datetime, str]:
	return (activity.created_at, activity.id)


def precedes(activity: Activity, cursor: ActivityCursor) -> bool:
	"""True when ``activity`` sorts strictly after the cursor in (created_at desc, id desc) order."""
	return (activity.created_at, activity.id) < (cursor.created_at, cursor.id)
