"""System event payloads stored as JSON text in ``room_events.content``.

Stored shape: ``{"k": <key>, "p": <optional params object>}``. Parsing never
raises; anything that does not fit yields ``Unparseable`` so readers can fall
back to showing the raw text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from nearby.domain.rooms.diff import InviteChange

KEY_JOINED = "room.system.joined"
KEY_LEFT = "room.system.left"
KEY_INVITE_UPDATED = "room.system.invite_updated"
KEY_INVITE_CLOSED = "room.system.invite_closed"


@dataclass(slots=True, frozen=True)
class JoinedPayload:
	key = KEY_JOINED


@dataclass(slots=True, frozen=True)
class LeftPayload:
	key = KEY_LEFT


@dataclass(slots=True, frozen=True)
class InviteUpdatedPayload:
	changes: Tuple[InviteChange, ...] = ()
	key = KEY_INVITE_UPDATED


@dataclass(slots=True, frozen=True)
class InviteClosedPayload:
	key = KEY_INVITE_CLOSED


@dataclass(slots=True, frozen=True)
class UnknownSystemPayload:
	"""Well-formed envelope with a key this build does not know."""

	key: str
	params: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Unparseable:
	raw: str


SystemPayload = Union[
	JoinedPayload,
	LeftPayload,
	InviteUpdatedPayload,
	InviteClosedPayload,
	UnknownSystemPayload,
	Unparseable,
]


def encode_system_content(payload: SystemPayload) -> str:
	if isinstance(payload, Unparseable):
		raise ValueError("cannot encode unparseable payload")
	if isinstance(payload, InviteUpdatedPayload):
		body: Dict[str, Any] = {"k": payload.key, "p": {"changes": [change.to_dict() for change in payload.changes]}}
	elif isinstance(payload, UnknownSystemPayload):
		body = {"k": payload.key}
		if payload.params:
			body["p"] = dict(payload.params)
	else:
		body = {"k": payload.key}
	return json.dumps(body, separators=(",", ":"), default=str)


def _load_envelope(content: str) -> Optional[Mapping[str, Any]]:
	try:
		parsed = json.loads(content)
	except (TypeError, ValueError):
		return None
	if not isinstance(parsed, dict):
		return None
	key = parsed.get("k")
	if not isinstance(key, str) or not key:
		return None
	params = parsed.get("p")
	if params is not None and not isinstance(params, dict):
		return None
	return parsed


def is_valid_system_content(content: str) -> bool:
	return _load_envelope(content) is not None


def parse_system_content(content: str) -> SystemPayload:
	envelope = _load_envelope(content)
	if envelope is None:
		return Unparseable(raw=content)
	key = envelope["k"]
	params = envelope.get("p") or {}
	if key == KEY_JOINED:
		return JoinedPayload()
	if key == KEY_LEFT:
		return LeftPayload()
	if key == KEY_INVITE_CLOSED:
		return InviteClosedPayload()
	if key == KEY_INVITE_UPDATED:
		raw_changes = params.get("changes") or []
		if not isinstance(raw_changes, list):
			return Unparseable(raw=content)
		changes = []
		for item in raw_changes:
			try:
				changes.append(InviteChange.from_dict(item))
			except ValueError:
				continue
		return InviteUpdatedPayload(changes=tuple(changes))
	return UnknownSystemPayload(key=key, params=dict(params))
