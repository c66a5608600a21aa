"""Activities domain exports."""

from .models import Activity, ActivityCursor, Membership, Place
from .policy import FeedContext, FeedKind, is_active_activity, is_expired_or_closed, is_joinable_activity

__all__ = [
	"Activity",
	"ActivityCursor",
	"FeedContext",
	"FeedKind",
	"Membership",
	"Place",
	"is_active_activity",
	"is_expired_or_closed",
	"is_joinable_activity",
]
