"""
Notification API: feed, read state, device tokens, preferences and test push.
"""

import pytest
from sqlalchemy import select

from fitsocial.app.models.push_token import PushToken
from fitsocial.app.services.notification_service import NotificationService
from fitsocial.app.services.push_provider import PushTicket
from fitsocial.app.services.push_service import PushDispatcher

from conftest import auth_headers, fetch_user

BASE = "/api/notifications"
TOKEN = "ExponentPushToken[apitestdevice000000000]"


@pytest.fixture
def service(session_factory, push_provider):
    return NotificationService(session_factory, PushDispatcher(push_provider))


@pytest.fixture
async def owner_with_feed(make_user, service):
    """A user with three follow notifications and one workout notification."""
    owner = await make_user("feedowner")
    for _ in range(3):
        fan = await make_user()
        await service.notify_follow(owner.id, fan.id)
    await service.notify_inactive(owner.id, {"days_inactive": 4})
    return owner


@pytest.mark.asyncio
async def test_requires_authentication(client):
    response = await client.get(BASE)
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "ERR_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_list_returns_envelope_with_actor(client, owner_with_feed):
    response = await client.get(BASE, headers=auth_headers(owner_with_feed))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    items = body["data"]["notifications"]
    assert len(items) == 4
    assert items[0]["type"] == "inactive_alert"
    assert items[0]["actor"] is None
    assert items[0]["metadata"]["days_inactive"] == 4
    assert items[1]["type"] == "follow"
    assert items[1]["actor"]["username"].startswith("athlete")
    assert body["data"]["nextCursor"] is None


@pytest.mark.asyncio
async def test_list_pages_with_cursor(client, owner_with_feed):
    headers = auth_headers(owner_with_feed)

    first = (await client.get(BASE, params={"limit": 3}, headers=headers)).json()["data"]
    assert len(first["notifications"]) == 3
    assert first["nextCursor"] is not None

    second = (await client.get(
        BASE, params={"limit": 3, "cursor": first["nextCursor"]}, headers=headers
    )).json()["data"]
    assert len(second["notifications"]) == 1
    assert second["nextCursor"] is None

    seen = [n["id"] for n in first["notifications"] + second["notifications"]]
    assert len(set(seen)) == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("cursor", ["2026-01-01T00:00:00", "not-a-date|4", "2026-01-01T00:00:00|x"])
async def test_list_rejects_malformed_cursor(client, owner_with_feed, cursor):
    response = await client.get(BASE, params={"cursor": cursor}, headers=auth_headers(owner_with_feed))

    assert response.status_code == 400
    assert response.json()["error"] == "ERR_BAD_REQUEST"


@pytest.mark.asyncio
async def test_list_rejects_out_of_range_limit(client, owner_with_feed):
    response = await client.get(BASE, params={"limit": 0}, headers=auth_headers(owner_with_feed))
    assert response.status_code == 400
    assert response.json()["error"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_category_filter_and_counts(client, owner_with_feed):
    headers = auth_headers(owner_with_feed)

    workout = (await client.get(BASE, params={"category": "workout"}, headers=headers)).json()["data"]
    assert [n["type"] for n in workout["notifications"]] == ["inactive_alert"]

    total = await client.get(f"{BASE}/unread-count", headers=headers)
    social = await client.get(f"{BASE}/unread-count", params={"category": "social"}, headers=headers)
    assert total.json()["data"]["count"] == 4
    assert social.json()["data"]["count"] == 3


@pytest.mark.asyncio
async def test_mark_read_flips_once(client, owner_with_feed):
    headers = auth_headers(owner_with_feed)
    items = (await client.get(BASE, headers=headers)).json()["data"]["notifications"]
    target = items[0]["id"]

    first = await client.put(f"{BASE}/{target}/read", headers=headers)
    again = await client.put(f"{BASE}/{target}/read", headers=headers)

    assert first.status_code == 200
    assert first.json()["message"] == "Notification marked as read"
    assert again.status_code == 200
    assert again.json()["message"] == "Notification already marked as read"
    assert (await fetch_user(owner_with_feed.id)).unread_notifications_count == 3


@pytest.mark.asyncio
async def test_mark_read_of_foreign_notification_is_forbidden(client, owner_with_feed, make_user):
    stranger = await make_user("stranger")
    items = (await client.get(BASE, headers=auth_headers(owner_with_feed))).json()["data"]["notifications"]

    response = await client.put(f"{BASE}/{items[0]['id']}/read", headers=auth_headers(stranger))

    assert response.status_code == 403
    assert response.json()["error"] == "ERR_PERM_001"
    assert (await fetch_user(owner_with_feed.id)).unread_notifications_count == 4


@pytest.mark.asyncio
async def test_mark_read_unknown_notification(client, make_user):
    user = await make_user()
    response = await client.put(f"{BASE}/98765/read", headers=auth_headers(user))
    assert response.status_code == 404
    assert response.json()["error"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_read_all_resets_badge(client, owner_with_feed):
    headers = auth_headers(owner_with_feed)

    response = await client.put(f"{BASE}/read-all", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["updated"] == 4
    count = await client.get(f"{BASE}/unread-count", headers=headers)
    assert count.json()["data"]["count"] == 0
    items = (await client.get(BASE, headers=headers)).json()["data"]["notifications"]
    assert all(n["is_read"] for n in items)


# --- Push tokens ---

@pytest.mark.asyncio
async def test_register_push_token(client, make_user, session_factory):
    user = await make_user()

    response = await client.post(
        f"{BASE}/register-push-token",
        json={"pushToken": TOKEN, "deviceInfo": {"platform": "android", "deviceName": "Pixel", "deviceId": "p-1"}},
        headers=auth_headers(user),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["token"] == TOKEN
    assert data["platform"] == "android"
    assert data["is_active"] is True

    async with session_factory() as session:
        rows = (await session.execute(select(PushToken).where(PushToken.user_id == user.id))).scalars().all()
    assert [r.device_name for r in rows] == ["Pixel"]


@pytest.mark.asyncio
async def test_register_invalid_push_token(client, make_user):
    user = await make_user()
    response = await client.post(
        f"{BASE}/register-push-token", json={"pushToken": "device-123"}, headers=auth_headers(user)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "ERR_PUSH_TOKEN"


@pytest.mark.asyncio
async def test_register_requires_token(client, make_user):
    user = await make_user()
    response = await client.post(f"{BASE}/register-push-token", json={}, headers=auth_headers(user))
    assert response.status_code == 400
    assert response.json()["error"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_unregister_one_token(client, make_user, add_token):
    user = await make_user()
    await add_token(user.id, TOKEN)

    response = await client.post(
        f"{BASE}/unregister-push-token", json={"pushToken": TOKEN}, headers=auth_headers(user)
    )
    missing = await client.post(
        f"{BASE}/unregister-push-token",
        json={"pushToken": "ExponentPushToken[neverregistered000000]"},
        headers=auth_headers(user),
    )

    assert response.status_code == 200
    assert response.json()["data"]["removed"] == 1
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_unregister_without_body_removes_all(client, make_user, add_token, session_factory):
    user = await make_user()
    await add_token(user.id, TOKEN)
    await add_token(user.id, "ExpoPushToken[seconddevice0000000000]")

    response = await client.post(f"{BASE}/unregister-push-token", headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json()["data"]["removed"] == 2
    async with session_factory() as session:
        rows = (await session.execute(select(PushToken).where(PushToken.user_id == user.id))).scalars().all()
    assert rows == []


# --- Preferences ---

@pytest.mark.asyncio
async def test_preferences_defaults(client, make_user):
    user = await make_user()
    response = await client.get(f"{BASE}/preferences", headers=auth_headers(user))

    assert response.status_code == 200
    prefs = response.json()["data"]
    assert prefs["push_enabled"] is True
    assert prefs["quiet_hours_enabled"] is False
    assert prefs["quiet_hours_start"] == "22:00:00"
    assert prefs["quiet_hours_end"] == "07:00:00"


@pytest.mark.asyncio
async def test_preferences_partial_update(client, make_user):
    user = await make_user()
    headers = auth_headers(user)

    response = await client.put(
        f"{BASE}/preferences",
        json={"quiet_hours_enabled": True, "quiet_hours_start": "23:00", "weekly_goal_enabled": False},
        headers=headers,
    )

    assert response.status_code == 200
    prefs = response.json()["data"]
    assert prefs["quiet_hours_enabled"] is True
    assert prefs["quiet_hours_start"] == "23:00:00"
    assert prefs["weekly_goal_enabled"] is False
    assert prefs["push_enabled"] is True

    reread = (await client.get(f"{BASE}/preferences", headers=headers)).json()["data"]
    assert reread["quiet_hours_start"] == "23:00:00"


@pytest.mark.asyncio
async def test_preferences_reject_invalid_values(client, make_user):
    user = await make_user()
    response = await client.put(
        f"{BASE}/preferences", json={"weekly_report_day": 9}, headers=auth_headers(user)
    )
    assert response.status_code == 400


# --- Test push ---

@pytest.mark.asyncio
async def test_test_push_delivers_to_devices(client, make_user, add_token, push_provider):
    user = await make_user()
    await add_token(user.id, TOKEN)

    response = await client.post(f"{BASE}/test-push", headers=auth_headers(user))

    assert response.status_code == 200
    tickets = response.json()["data"]["tickets"]
    assert [t["status"] for t in tickets] == ["ok"]
    message = push_provider.messages[0]
    assert message.to == TOKEN
    assert message.title == "Test Notification"
    assert message.data["type"] == "test"


@pytest.mark.asyncio
async def test_test_push_reports_error_tickets(client, make_user, add_token, push_provider):
    user = await make_user()
    await add_token(user.id, TOKEN)
    push_provider.tickets_for[TOKEN] = PushTicket(status="error", message="rate", error="MessageRateExceeded")

    response = await client.post(f"{BASE}/test-push", headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json()["data"]["tickets"][0]["error"] == "MessageRateExceeded"


@pytest.mark.asyncio
async def test_test_push_without_devices_fails(client, make_user, push_provider):
    user = await make_user()

    response = await client.post(f"{BASE}/test-push", headers=auth_headers(user))

    assert response.status_code == 400
    assert response.json()["error"] == "ERR_BAD_REQUEST"
    assert push_provider.calls == []
