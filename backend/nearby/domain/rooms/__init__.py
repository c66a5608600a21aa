"""Rooms domain exports."""

from .diff import NOT_PROVIDED, InviteChange, InviteEdit, diff_invite_edit
from .models import EventPage, RoomEvent, RoomEventCursor, RoomState
from .system_events import parse_system_content

__all__ = [
	"EventPage",
	"InviteChange",
	"InviteEdit",
	"NOT_PROVIDED",
	"RoomEvent",
	"RoomEventCursor",
	"RoomState",
	"diff_invite_edit",
	"parse_system_content",
]
