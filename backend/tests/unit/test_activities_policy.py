from datetime import timedelta

import pytest

from nearby.domain.activities import policy
from nearby.domain.activities.policy import FeedContext, FeedKind
from nearby.domain.exceptions import ConflictError, ForbiddenError, NotFoundError


@pytest.mark.parametrize("expires_in", [None, timedelta(hours=1), timedelta(hours=-1)])
def test_closed_activity_is_never_active(make_activity, base_time, expires_in):
    expires_at = base_time + expires_in if expires_in is not None else None
    activity = make_activity("a1", status="closed", expires_at=expires_at)
    assert policy.is_active_activity(activity, base_time) is False
    assert policy.is_expired_or_closed(activity, base_time) is True


def test_expiry_boundary_is_exclusive(make_activity, base_time):
    expires_at = base_time + timedelta(minutes=30)
    activity = make_activity("a1", expires_at=expires_at)

    assert policy.is_active_activity(activity, expires_at - timedelta(microseconds=1)) is True
    assert policy.is_active_activity(activity, expires_at) is False
    assert policy.is_expired_or_closed(activity, expires_at) is True


def test_open_activity_without_expiry_is_joinable(make_activity, base_time):
    activity = make_activity("a1", expires_at=None)
    assert policy.is_joinable_activity(activity, frozenset(), base_time) is True
    assert policy.is_joinable_activity(activity, frozenset({"a1"}), base_time) is False


def test_browse_excludes_own_and_joined(make_activity, base_time):
    context = FeedContext(kind=FeedKind.BROWSE, user_id="me", joined_ids=frozenset({"joined"}), now=base_time)
    assert policy.is_visible_in_feed(make_activity("other"), context) is True
    assert policy.is_visible_in_feed(make_activity("mine", creator_id="me"), context) is False
    assert policy.is_visible_in_feed(make_activity("joined"), context) is False


def test_created_keeps_closed_own_activities(make_activity, base_time):
    context = FeedContext(kind=FeedKind.CREATED, user_id="me", now=base_time)
    assert policy.is_visible_in_feed(make_activity("mine", creator_id="me", status="closed"), context) is True
    assert policy.is_visible_in_feed(make_activity("theirs"), context) is False


def test_joined_view_drops_own_and_expired(make_activity, base_time):
    context = FeedContext(
        kind=FeedKind.JOINED,
        user_id="me",
        joined_ids=frozenset({"a", "b", "mine"}),
        now=base_time,
    )
    assert policy.is_visible_in_feed(make_activity("a"), context) is True
    assert policy.is_visible_in_feed(make_activity("b", expires_at=base_time), context) is False
    assert policy.is_visible_in_feed(make_activity("mine", creator_id="me"), context) is False
    assert policy.is_visible_in_feed(make_activity("c"), context) is False


def test_history_view_membership_rules(make_activity, base_time):
    context = FeedContext(
        kind=FeedKind.HISTORY,
        user_id="me",
        joined_ids=frozenset({"joined-active", "joined-closed"}),
        left_ids=frozenset({"left-active"}),
        now=base_time,
    )
    assert policy.is_visible_in_feed(make_activity("left-active"), context) is True
    assert policy.is_visible_in_feed(make_activity("joined-closed", status="closed"), context) is True
    assert policy.is_visible_in_feed(make_activity("joined-active"), context) is False
    assert policy.is_visible_in_feed(make_activity("own-expired", creator_id="me", expires_at=base_time), context) is True
    assert policy.is_visible_in_feed(make_activity("stranger", status="closed"), context) is False


def test_guards_raise_domain_errors(make_activity, base_time):
    activity = make_activity("a1", capacity=2, status="closed")
    with pytest.raises(NotFoundError):
        policy.ensure_found(None)
    with pytest.raises(ForbiddenError):
        policy.ensure_creator(activity, "someone-else")
    with pytest.raises(ConflictError) as inactive:
        policy.ensure_active(activity, base_time)
    assert inactive.value.detail == "activity_inactive"
    with pytest.raises(ConflictError) as full:
        policy.ensure_capacity_available(activity, 2)
    assert full.value.detail == "capacity_reached"
    policy.ensure_capacity_available(make_activity("a2", capacity=None), 500)
