from unittest.mock import AsyncMock

import pytest
import socketio

from dsync.client.api import ChatApi
from dsync.client.live import LiveChannel
from dsync.client.session import ChatSession
from dsync.domain.chat import events


def _channel() -> LiveChannel:
    client = socketio.AsyncClient(reconnection=False)
    client.emit = AsyncMock()
    return LiveChannel("http://testserver", "user-a", client=client)


def _session(chat_id: str) -> ChatSession:
    session = ChatSession(chat_id, "user-a", ChatApi("http://testserver", user_id="user-a"))
    session.refresh = AsyncMock()
    return session


def _handler(channel: LiveChannel, event: str):
    return channel.sio.handlers[events.NAMESPACE][event]


@pytest.mark.asyncio
async def test_connect_joins_user_and_attached_chats():
    channel = _channel()
    channel.sessions["chat-1"] = _session("chat-1")

    await _handler(channel, "connect")()

    emitted = [(call.args[0], call.args[1]) for call in channel.sio.emit.await_args_list]
    assert emitted == [(events.JOIN, {"userId": "user-a"}), (events.JOIN_CHAT, {"chatId": "chat-1"})]
    channel.sessions["chat-1"].refresh.assert_not_awaited()


@pytest.mark.asyncio
async def test_reconnect_refreshes_sessions():
    channel = _channel()
    session = _session("chat-1")
    channel.sessions["chat-1"] = session

    await _handler(channel, "connect")()
    await _handler(channel, "connect")()

    session.refresh.assert_awaited_once()


@pytest.mark.asyncio
async def test_events_are_routed_by_chat_id():
    channel = _channel()
    one, two = _session("chat-1"), _session("chat-2")
    channel.sessions = {"chat-1": one, "chat-2": two}

    await _handler(channel, events.TYPING)({"chatId": "chat-2", "userId": "user-b"})

    assert one.typing == set()
    assert two.typing == {"user-b"}
    assert channel.route(events.TYPING, {"chatId": "chat-9", "userId": "user-b"}) is False


@pytest.mark.asyncio
async def test_presence_events_track_online_users():
    channel = _channel()

    await _handler(channel, events.ONLINE_USERS)({"userIds": ["user-b", "user-c"]})
    await _handler(channel, events.USER_ONLINE)({"userId": "user-d"})
    await _handler(channel, events.USER_OFFLINE)({"userId": "user-b", "lastSeen": "2024-01-01T10:00:00+00:00"})

    assert channel.online == {"user-c", "user-d"}
    assert channel.last_seen["user-b"].hour == 10
    assert channel.sid is None
