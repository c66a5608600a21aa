from datetime import datetime, timedelta, timezone

import jwt
import pytest

from nearby.settings import settings


def _as(user_id):
    return {"X-User-Id": user_id}


async def _create(api_client, user_id="creator", **body):
    payload = {"title_text": "Coffee", "place": {"name": "Cafe", "address": "1 Main St"}}
    payload.update(body)
    response = await api_client.post("/activities", json=payload, headers=_as(user_id))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_requires_authentication(api_client):
    response = await api_client.get("/activities/browse")
    assert response.status_code == 401
    assert response.json()["detail"] == "not_authenticated"


@pytest.mark.asyncio
async def test_bearer_token_is_accepted(api_client):
    token = jwt.encode(
        {"sub": "jwt-user", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        settings.secret_key,
        algorithm="HS256",
    )
    created = await api_client.post(
        "/activities",
        json={"title_text": "Run"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert created.status_code == 201
    assert created.json()["creator_id"] == "jwt-user"

    bad = await api_client.get("/activities/browse", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_create_then_browse_and_page(api_client):
    for title in ("One", "Two", "Three"):
        await _create(api_client, title_text=title)

    first = await api_client.get("/activities/browse", params={"limit": 2}, headers=_as("viewer"))
    assert first.status_code == 200
    body = first.json()
    assert [item["title_text"] for item in body["items"]] == ["Three", "Two"]
    assert body["has_more"] is True
    assert body["items"][0]["place"]["label"] == "Cafe / 1 Main St"

    second = await api_client.get(
        "/activities/browse",
        params={"limit": 2, "cursor": body["next_cursor"]},
        headers=_as("viewer"),
    )
    assert [item["title_text"] for item in second.json()["items"]] == ["One"]
    assert second.json()["has_more"] is False

    own = await api_client.get("/activities/browse", headers=_as("creator"))
    assert own.json()["items"] == []
    created = await api_client.get("/activities/created", headers=_as("creator"))
    assert len(created.json()["items"]) == 3


@pytest.mark.asyncio
async def test_invalid_cursor_is_422(api_client):
    response = await api_client.get("/activities/browse", params={"cursor": "%%%"}, headers=_as("viewer"))
    assert response.status_code == 422
    assert response.json()["detail"] == "invalid_cursor"


@pytest.mark.asyncio
async def test_join_leave_and_views(api_client):
    activity = await _create(api_client, capacity=3)
    activity_id = activity["id"]

    joined = await api_client.post(f"/activities/{activity_id}/join", headers=_as("u1"))
    assert joined.status_code == 200
    assert joined.json()["state"] == "joined"

    joined_view = await api_client.get("/activities/joined", headers=_as("u1"))
    assert [item["id"] for item in joined_view.json()["items"]] == [activity_id]
    browse = await api_client.get("/activities/browse", headers=_as("u1"))
    assert browse.json()["items"] == []

    members = await api_client.get(f"/activities/{activity_id}/members", headers=_as("u1"))
    assert members.json()["count"] == 2

    left = await api_client.post(f"/activities/{activity_id}/leave", headers=_as("u1"))
    assert left.json()["state"] == "left"
    history = await api_client.get("/activities/history", headers=_as("u1"))
    assert [item["id"] for item in history.json()["items"]] == [activity_id]

    missing = await api_client.post(f"/activities/{activity_id}/leave", headers=_as("u2"))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_capacity_and_closed_conflicts(api_client):
    activity = await _create(api_client, capacity=2)
    activity_id = activity["id"]
    assert (await api_client.post(f"/activities/{activity_id}/join", headers=_as("u1"))).status_code == 200

    full = await api_client.post(f"/activities/{activity_id}/join", headers=_as("u2"))
    assert full.status_code == 409
    assert full.json()["detail"] == "capacity_reached"

    forbidden = await api_client.post(f"/activities/{activity_id}/close", headers=_as("u1"))
    assert forbidden.status_code == 403

    closed = await api_client.post(f"/activities/{activity_id}/close", headers=_as("creator"))
    assert closed.json()["status"] == "closed"
    history = await api_client.get("/activities/history", headers=_as("u1"))
    assert [item["id"] for item in history.json()["items"]] == [activity_id]


@pytest.mark.asyncio
async def test_edit_distinguishes_omitted_and_null_fields(api_client):
    expires = (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat()
    activity = await _create(api_client, capacity=4, expires_at=expires)
    activity_id = activity["id"]

    response = await api_client.patch(
        f"/activities/{activity_id}",
        json={"capacity": None},
        headers=_as("creator"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["activity"]["capacity"] is None
    assert body["activity"]["expires_at"] is not None
    assert body["changes"] == [{"kind": "capacity", "from": 4, "to": None}]
    assert body["system_event_id"]

    cleared = await api_client.patch(
        f"/activities/{activity_id}",
        json={"expires_at": None},
        headers=_as("creator"),
    )
    assert cleared.json()["changes"] == [{"kind": "expires", "toMode": "never", "iso": None}]

    unchanged = await api_client.patch(f"/activities/{activity_id}", json={}, headers=_as("creator"))
    assert unchanged.json()["changes"] == []
    assert unchanged.json()["system_event_id"] is None


@pytest.mark.asyncio
async def test_validation_and_missing_activity(api_client):
    bad = await api_client.post("/activities", json={"title_text": ""}, headers=_as("creator"))
    assert bad.status_code == 422
    schedule = await api_client.post(
        "/activities",
        json={
            "title_text": "Late",
            "start_time": "2030-01-01T12:00:00Z",
            "end_time": "2030-01-01T11:00:00Z",
        },
        headers=_as("creator"),
    )
    assert schedule.status_code == 422
    assert schedule.json()["detail"] == "invalid_schedule"

    missing = await api_client.get("/activities/does-not-exist", headers=_as("creator"))
    assert missing.status_code == 404
    assert missing.json()["detail"] == "activity_not_found"


@pytest.mark.asyncio
async def test_naive_timestamps_are_stored_as_utc(api_client):
    created = await _create(
        api_client,
        title_text="No zone",
        expires_at="2099-01-01T10:00:00",
        start_time="2099-01-01T09:00:00",
        end_time="2099-01-01T11:00:00Z",
    )
    assert created["expires_at"].endswith(("Z", "+00:00"))

    browse = await api_client.get("/activities/browse", headers=_as("viewer"))
    assert browse.status_code == 200
    assert [item["id"] for item in browse.json()["items"]] == [created["id"]]

    backwards = await api_client.post(
        "/activities",
        json={"title_text": "Backwards", "start_time": "2099-01-01T12:00:00", "end_time": "2099-01-01T11:00:00Z"},
        headers=_as("creator"),
    )
    assert backwards.status_code == 422
    assert backwards.json()["detail"] == "invalid_schedule"
