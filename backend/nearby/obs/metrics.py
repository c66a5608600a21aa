"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


REQUEST_COUNTER = Counter(
	"nearby_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"nearby_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

FEED_PAGES = Counter(
	"nearby_feed_pages_total",
	"Feed pages fetched per view",
	["view"],
)

FEED_STALE_PAGES = Counter(
	"nearby_feed_stale_pages_total",
	"Page results discarded because the view was disposed or refreshed",
	["view"],
)

REALTIME_CHANGES = Counter(
	"nearby_realtime_changes_total",
	"Realtime change events reconciled into a feed view",
	["view", "outcome"],
)

MEMBERSHIP_TRANSITIONS = Counter(
	"nearby_membership_transitions_total",
	"Membership writes by action",
	["action"],
)

ACTIVITIES_WRITTEN = Counter(
	"nearby_activities_written_total",
	"Activity mutations by kind",
	["kind"],
)

ROOM_EVENTS = Counter(
	"nearby_room_events_total",
	"Room events appended by type",
	["type"],
)

SIDE_EFFECT_FAILURES = Counter(
	"nearby_side_effect_failures_total",
	"Best-effort side effects that failed after a successful primary write",
	["kind"],
)

CHANGE_FEED_DROPPED = Counter(
	"nearby_change_feed_dropped_total",
	"Change feed messages that could not be decoded or dispatched",
	["reason"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_feed_page(view: str) -> None:
	FEED_PAGES.labels(view=view).inc()


def inc_feed_stale_page(view: str) -> None:
	FEED_STALE_PAGES.labels(view=view).inc()


def inc_realtime_change(view: str, outcome: str) -> None:
	REALTIME_CHANGES.labels(view=view, outcome=outcome).inc()


def inc_membership(action: str) -> None:
	MEMBERSHIP_TRANSITIONS.labels(action=action).inc()


def inc_activity_written(kind: str) -> None:
	ACTIVITIES_WRITTEN.labels(kind=kind).inc()


def inc_room_event(event_type: str) -> None:
	ROOM_EVENTS.labels(type=event_type).inc()


def inc_side_effect_failure(kind: str) -> None:
	SIDE_EFFECT_FAILURES.labels(kind=kind).inc()


def inc_change_feed_dropped(reason: str) -> None:
	CHANGE_FEED_DROPPED.labels(reason=reason).inc()
