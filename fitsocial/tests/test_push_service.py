"""
Push dispatch and device token registry.
"""

import json
from datetime import datetime, time

import httpx
import pytest
from sqlalchemy import select

from fitsocial.app.core.exceptions import InvalidPushTokenError, ResourceNotFoundError
from fitsocial.app.core.reliability import CircuitOpenError
from fitsocial.app.models.notification_preference import NotificationPreference
from fitsocial.app.models.push_token import PushToken
from fitsocial.app.services.push_provider import ExpoPushClient, PushProviderError, PushTicket
from fitsocial.app.services.push_service import (
    PushDispatcher,
    PushPayload,
    PushTokenRegistry,
    update_preferences,
)

TOKEN_A = "ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]"
TOKEN_B = "ExponentPushToken[bbbbbbbbbbbbbbbbbbbbbb]"

PAYLOAD = PushPayload(title="New Like", body="runner liked your workout post", data={"type": "like"})


async def _tokens(session_factory, **filters):
    async with session_factory() as session:
        query = select(PushToken)
        for key, value in filters.items():
            query = query.where(getattr(PushToken, key) == value)
        result = await session.execute(query)
        return result.scalars().all()


async def _send(session_factory, dispatcher, user_id):
    async with session_factory() as session:
        tickets = await dispatcher.send(session, user_id, PAYLOAD)
        await session.commit()
        return tickets


@pytest.mark.asyncio
async def test_push_disabled_skips_provider(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    await add_token(user.id, TOKEN_A)
    async with session_factory() as session:
        await update_preferences(session, user.id, {"push_enabled": False})
        await session.commit()

    tickets = await _send(session_factory, PushDispatcher(push_provider), user.id)

    assert tickets == []
    assert push_provider.calls == []


@pytest.mark.asyncio
async def test_no_active_tokens_skips_provider(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    await add_token(user.id, TOKEN_A, is_active=False)

    tickets = await _send(session_factory, PushDispatcher(push_provider), user.id)

    assert tickets == []
    assert push_provider.calls == []


@pytest.mark.asyncio
async def test_quiet_hours_skip_provider(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    await add_token(user.id, TOKEN_A)
    async with session_factory() as session:
        await update_preferences(session, user.id, {
            "quiet_hours_enabled": True,
            "quiet_hours_start": time(22, 0),
            "quiet_hours_end": time(7, 0),
        })
        await session.commit()

    late = PushDispatcher(push_provider, clock=lambda: datetime(2026, 1, 1, 23, 30))
    assert await _send(session_factory, late, user.id) == []
    assert push_provider.calls == []

    morning = PushDispatcher(push_provider, clock=lambda: datetime(2026, 1, 1, 7, 0))
    assert len(await _send(session_factory, morning, user.id)) == 1


@pytest.mark.asyncio
async def test_missing_preferences_allow_push(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    await add_token(user.id, TOKEN_A)
    async with session_factory() as session:
        prefs = (await session.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user.id)
        )).scalar_one()
        await session.delete(prefs)
        await session.commit()

    tickets = await _send(session_factory, PushDispatcher(push_provider), user.id)
    assert [t.status for t in tickets] == ["ok"]


@pytest.mark.asyncio
async def test_one_batched_call_for_all_devices(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    await add_token(user.id, TOKEN_A)
    await add_token(user.id, TOKEN_B, platform="android")

    tickets = await _send(session_factory, PushDispatcher(push_provider), user.id)

    assert len(push_provider.calls) == 1
    assert {m.to for m in push_provider.calls[0]} == {TOKEN_A, TOKEN_B}
    assert len(tickets) == 2
    message = push_provider.calls[0][0]
    assert message.title == "New Like"
    assert message.data == {"type": "like"}


@pytest.mark.asyncio
async def test_malformed_token_is_deactivated(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    bad_id = await add_token(user.id, "not-a-push-token")
    await add_token(user.id, TOKEN_A)

    await _send(session_factory, PushDispatcher(push_provider), user.id)

    assert [m.to for m in push_provider.messages] == [TOKEN_A]
    bad = (await _tokens(session_factory, id=bad_id))[0]
    assert bad.is_active is False


@pytest.mark.asyncio
async def test_only_malformed_tokens_means_no_call(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    await add_token(user.id, "garbage")

    assert await _send(session_factory, PushDispatcher(push_provider), user.id) == []
    assert push_provider.calls == []


@pytest.mark.asyncio
async def test_device_not_registered_deactivates_token(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    dead_id = await add_token(user.id, TOKEN_A)
    live_id = await add_token(user.id, TOKEN_B)
    push_provider.tickets_for[TOKEN_A] = PushTicket(
        status="error", message="not registered", error="DeviceNotRegistered"
    )

    tickets = await _send(session_factory, PushDispatcher(push_provider), user.id)

    assert sorted(t.status for t in tickets) == ["error", "ok"]
    dead = (await _tokens(session_factory, id=dead_id))[0]
    live = (await _tokens(session_factory, id=live_id))[0]
    assert dead.is_active is False
    assert dead.last_used_at is None
    assert live.is_active is True
    assert live.last_used_at is not None


@pytest.mark.asyncio
async def test_other_ticket_errors_only_log(make_user, add_token, push_provider, session_factory):
    user = await make_user()
    token_id = await add_token(user.id, TOKEN_A)
    push_provider.tickets_for[TOKEN_A] = PushTicket(
        status="error", message="slow down", error="MessageRateExceeded"
    )

    await _send(session_factory, PushDispatcher(push_provider), user.id)

    row = (await _tokens(session_factory, id=token_id))[0]
    assert row.is_active is True
    assert row.last_used_at is None


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [PushProviderError("503"), CircuitOpenError("open")])
async def test_provider_failure_returns_empty(make_user, add_token, push_provider, session_factory, error):
    user = await make_user()
    await add_token(user.id, TOKEN_A)
    push_provider.error = error

    assert await _send(session_factory, PushDispatcher(push_provider), user.id) == []


@pytest.mark.asyncio
async def test_failed_chunk_does_not_discard_delivered_devices(make_user, add_token, session_factory):
    user = await make_user()
    delivered_id = await add_token(user.id, TOKEN_A)
    failed_id = await add_token(user.id, TOKEN_B)

    def handler(request):
        batch = json.loads(request.content)
        if batch[0]["to"] == TOKEN_B:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "t-a"}]})

    client = ExpoPushClient("https://exp.host/--/api/v2/push/send", batch_size=1,
                            transport=httpx.MockTransport(handler))

    tickets = await _send(session_factory, PushDispatcher(client), user.id)

    assert sorted(t.status for t in tickets) == ["error", "ok"]
    delivered = (await _tokens(session_factory, id=delivered_id))[0]
    failed = (await _tokens(session_factory, id=failed_id))[0]
    assert delivered.last_used_at is not None
    assert failed.is_active is True
    assert failed.last_used_at is None


# --- Registry ---

@pytest.mark.asyncio
async def test_register_moves_token_between_accounts(make_user, session_factory):
    alice = await make_user("alice")
    bob = await make_user("bob")

    async with session_factory() as session:
        await PushTokenRegistry.register(session, alice.id, TOKEN_A, {"platform": "ios"})
        await session.commit()
    async with session_factory() as session:
        await PushTokenRegistry.register(session, bob.id, TOKEN_A, {"platform": "ios"})
        await session.commit()

    rows = await _tokens(session_factory, token=TOKEN_A)
    assert len(rows) == 1
    assert rows[0].user_id == bob.id
    assert rows[0].is_active is True


@pytest.mark.asyncio
async def test_register_reactivates_existing_token(make_user, add_token, session_factory):
    user = await make_user()
    token_id = await add_token(user.id, TOKEN_A, is_active=False, platform="ios")

    async with session_factory() as session:
        row = await PushTokenRegistry.register(
            session, user.id, TOKEN_A, {"platform": "android", "device_name": "Pixel 9", "device_id": "dev-1"}
        )
        await session.commit()

    assert row.id == token_id
    stored = (await _tokens(session_factory, id=token_id))[0]
    assert stored.is_active is True
    assert stored.platform == "android"
    assert stored.device_name == "Pixel 9"
    assert len(await _tokens(session_factory, user_id=user.id)) == 1


@pytest.mark.asyncio
async def test_register_rejects_malformed_token(make_user, session_factory):
    user = await make_user()
    async with session_factory() as session:
        with pytest.raises(InvalidPushTokenError):
            await PushTokenRegistry.register(session, user.id, "hello")


@pytest.mark.asyncio
async def test_unregister_single_token_deactivates(make_user, add_token, session_factory):
    user = await make_user()
    await add_token(user.id, TOKEN_A)
    await add_token(user.id, TOKEN_B)

    async with session_factory() as session:
        assert await PushTokenRegistry.unregister(session, user.id, TOKEN_A) == 1
        await session.commit()

    active = await _tokens(session_factory, user_id=user.id, is_active=True)
    assert [t.token for t in active] == [TOKEN_B]


@pytest.mark.asyncio
async def test_unregister_unknown_token_is_not_found(make_user, session_factory):
    user = await make_user()
    async with session_factory() as session:
        with pytest.raises(ResourceNotFoundError):
            await PushTokenRegistry.unregister(session, user.id, TOKEN_A)


@pytest.mark.asyncio
async def test_unregister_all_deletes_rows(make_user, add_token, session_factory):
    user = await make_user()
    other = await make_user()
    await add_token(user.id, TOKEN_A)
    await add_token(user.id, TOKEN_B, is_active=False)
    await add_token(other.id, "ExpoPushToken[cccccccccccccccccccccc]")

    async with session_factory() as session:
        assert await PushTokenRegistry.unregister(session, user.id) == 2
        await session.commit()

    assert await _tokens(session_factory, user_id=user.id) == []
    assert len(await _tokens(session_factory, user_id=other.id)) == 1
