from unittest.mock import AsyncMock

import pytest
import socketio

from dsync.domain.chat import events
from dsync.domain.presence.broker import SocketBroker
from dsync.domain.presence.sockets import SyncNamespace
from dsync.infra.jwt import encode_access
from dsync.settings import settings


def _scope_with_authorization(token: str) -> dict:
	return {
		"headers": [(b"authorization", f"Bearer {token}".encode())],
	}


def _namespace(registry) -> SyncNamespace:
	server = socketio.AsyncServer(async_mode="asgi")
	namespace = SyncNamespace(registry)
	server.register_namespace(namespace)
	namespace.emit = AsyncMock()
	namespace.enter_room = AsyncMock()
	namespace.leave_room = AsyncMock()
	return namespace


def _emitted(namespace) -> list:
	return [(call.args[0], call.args[1], call.kwargs.get("room"), call.kwargs.get("skip_sid")) for call in namespace.emit.await_args_list]


@pytest.mark.asyncio
async def test_connect_rejects_invalid_token(registry):
	namespace = _namespace(registry)

	with pytest.raises(ConnectionRefusedError):
		await namespace.trigger_event("connect", "sid-1", {"asgi.scope": _scope_with_authorization("garbage")})


@pytest.mark.asyncio
async def test_connect_with_token_joins_verified_user(registry):
	namespace = _namespace(registry)
	token = encode_access({"sub": "user-a"})

	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": _scope_with_authorization(token)})

	assert registry.user_for("sid-1") == "user-a"
	namespace.enter_room.assert_awaited_with("sid-1", events.user_room("user-a"))
	assert (events.ONLINE_USERS, {"userIds": ["user-a"]}, None, None) in _emitted(namespace)


@pytest.mark.asyncio
async def test_join_announces_first_connection_only(registry):
	namespace = _namespace(registry)
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})
	await namespace.trigger_event("connect", "sid-2", {"asgi.scope": {"headers": []}})

	await namespace.trigger_event("join", "sid-1", {"userId": "user-a"})
	await namespace.trigger_event("join", "sid-2", {"userId": "user-a"})

	online = [item for item in _emitted(namespace) if item[0] == events.USER_ONLINE]
	assert online == [(events.USER_ONLINE, {"userId": "user-a"}, None, "sid-1")]
	assert registry.sids_for("user-a") == {"sid-1", "sid-2"}


@pytest.mark.asyncio
async def test_declared_identity_is_ignored_for_verified_socket(registry):
	namespace = _namespace(registry)
	token = encode_access({"sub": "user-a"})
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": _scope_with_authorization(token)})

	await namespace.trigger_event("join", "sid-1", {"userId": "user-z"})

	assert registry.user_for("sid-1") == "user-a"
	assert not registry.is_online("user-z")


@pytest.mark.asyncio
async def test_untrusted_join_is_refused_without_token(registry, monkeypatch):
	monkeypatch.setattr(settings, "presence_trust_client_identity", False)
	namespace = _namespace(registry)
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})

	await namespace.trigger_event("join", "sid-1", "user-a")

	assert registry.user_for("sid-1") is None
	assert _emitted(namespace) == [("sync-error", {"code": "unauthenticated"}, "sid-1", None)]


@pytest.mark.asyncio
async def test_last_disconnect_announces_offline(registry):
	namespace = _namespace(registry)
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})
	await namespace.trigger_event("connect", "sid-2", {"asgi.scope": {"headers": []}})
	await namespace.trigger_event("join", "sid-1", {"userId": "user-a"})
	await namespace.trigger_event("join", "sid-2", {"userId": "user-a"})
	namespace.emit.reset_mock()

	await namespace.trigger_event("disconnect", "sid-1")
	assert _emitted(namespace) == []

	await namespace.trigger_event("disconnect", "sid-2")
	emitted = _emitted(namespace)
	assert emitted[0][0] == events.USER_OFFLINE
	assert emitted[0][1]["userId"] == "user-a"
	assert emitted[0][1]["lastSeen"]
	assert emitted[1] == (events.ONLINE_USERS, {"userIds": []}, None, None)


@pytest.mark.asyncio
async def test_rebinding_a_socket_leaves_the_previous_user_room(registry):
	namespace = _namespace(registry)
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})
	await namespace.trigger_event("join", "sid-1", {"userId": "user-a"})
	namespace.emit.reset_mock()

	await namespace.trigger_event("join", "sid-1", {"userId": "user-b"})

	namespace.leave_room.assert_awaited_once_with("sid-1", events.user_room("user-a"))
	namespace.enter_room.assert_awaited_with("sid-1", events.user_room("user-b"))
	emitted = _emitted(namespace)
	assert emitted[0][0] == events.USER_OFFLINE
	assert emitted[0][1]["userId"] == "user-a"
	assert (events.USER_ONLINE, {"userId": "user-b"}, None, "sid-1") in emitted
	assert registry.online_users() == {"user-b"}


@pytest.mark.asyncio
async def test_rebind_keeps_previous_user_online_on_other_sockets(registry):
	namespace = _namespace(registry)
	await namespace.trigger_event("join", "sid-1", {"userId": "user-a"})
	await namespace.trigger_event("join", "sid-2", {"userId": "user-a"})
	namespace.emit.reset_mock()

	await namespace.trigger_event("join", "sid-1", {"userId": "user-b"})

	namespace.leave_room.assert_awaited_once_with("sid-1", events.user_room("user-a"))
	assert events.USER_OFFLINE not in [item[0] for item in _emitted(namespace)]
	assert registry.sids_for("user-a") == {"sid-2"}


@pytest.mark.asyncio
async def test_shutdown_announces_every_departure(registry):
	namespace = _namespace(registry)
	await registry.init()
	await namespace.trigger_event("join", "sid-1", {"userId": "user-a"})
	await namespace.trigger_event("join", "sid-2", {"userId": "user-b"})
	namespace.emit.reset_mock()

	departures = await namespace.shutdown()

	assert sorted(d.user_id for d in departures) == ["user-a", "user-b"]
	offline = sorted(item[1]["userId"] for item in _emitted(namespace) if item[0] == events.USER_OFFLINE)
	assert offline == ["user-a", "user-b"]
	assert registry.running is False


@pytest.mark.asyncio
async def test_join_chat_and_typing_relay_to_chat_room(registry):
	namespace = _namespace(registry)
	await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}})
	await namespace.trigger_event("join", "sid-1", {"userId": "user-a"})
	namespace.emit.reset_mock()

	await namespace.trigger_event("join-chat", "sid-1", {"chatId": "chat-1"})
	await namespace.trigger_event("typing", "sid-1", {"chatId": "chat-1", "userId": "user-a", "userName": "Ada"})
	await namespace.trigger_event("stop-typing", "sid-1", {"chat": {"id": "chat-1"}})
	await namespace.trigger_event("typing", "sid-1", {"userId": "user-a"})

	namespace.enter_room.assert_awaited_with("sid-1", events.chat_room("chat-1"))
	assert _emitted(namespace) == [
		(events.TYPING, {"chatId": "chat-1", "userId": "user-a", "userName": "Ada"}, "chat:chat-1", "sid-1"),
		(events.STOP_TYPING, {"chatId": "chat-1", "userId": "user-a"}, "chat:chat-1", "sid-1"),
	]


@pytest.mark.asyncio
async def test_action_echoes_are_dropped_unless_enabled(registry, monkeypatch):
	namespace = _namespace(registry)
	payload = {"chatId": "chat-1", "id": "m1", "content": "hi"}

	await namespace.trigger_event("send-message", "sid-1", payload)
	assert _emitted(namespace) == []

	monkeypatch.setattr(settings, "sync_echo_relay_enabled", True)
	await namespace.trigger_event("send-message", "sid-1", payload)
	await namespace.trigger_event("message-liked", "sid-1", {"chatId": "chat-1", "messageId": "m1", "likes": []})

	assert _emitted(namespace) == [
		(events.RECEIVE_MESSAGE, payload, "chat:chat-1", "sid-1"),
		(events.MESSAGE_LIKED, {"chatId": "chat-1", "messageId": "m1", "likes": []}, "chat:chat-1", "sid-1"),
	]


@pytest.mark.asyncio
async def test_socket_broker_emits_into_user_rooms(registry):
	namespace = _namespace(registry)
	broker = SocketBroker(namespace)

	await broker.to_users(["user-b", "user-c"], events.MESSAGE_DELETED, {"messageId": "m1"}, skip_sid="sid-1")

	assert _emitted(namespace) == [
		(events.MESSAGE_DELETED, {"messageId": "m1"}, "user:user-b", "sid-1"),
		(events.MESSAGE_DELETED, {"messageId": "m1"}, "user:user-c", "sid-1"),
	]


@pytest.mark.asyncio
async def test_socket_broker_keeps_going_when_one_emit_fails(registry):
	namespace = _namespace(registry)
	namespace.emit = AsyncMock(side_effect=[RuntimeError("boom"), None])
	broker = SocketBroker(namespace)

	await broker.to_users(["user-b", "user-c"], events.MESSAGE_DELETED, {"messageId": "m1"})

	assert namespace.emit.await_count == 2
