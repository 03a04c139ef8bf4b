"""Live channel event names and payload builders."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from .schemas import MessageOut, ReceiptOut

NAMESPACE = "/sync"

# client -> server
JOIN = "join"
JOIN_CHAT = "join-chat"
TYPING = "typing"
STOP_TYPING = "stop-typing"
SEND_MESSAGE = "send-message"

# server -> client
MESSAGE_CREATED = "message-created"
RECEIVE_MESSAGE = "receive-message"
MESSAGE_EDITED = "message-edited"
MESSAGE_DELETED = "message-deleted"
MESSAGE_LIKED = "message-liked"
MESSAGE_READ = "message-read"
MESSAGE_DELIVERED = "message-delivered"
ONLINE_USERS = "online-users"
USER_ONLINE = "user-online"
USER_OFFLINE = "user-offline"

# Client action echoes and the name they are relayed under.
ECHO_RELAYS = {
	SEND_MESSAGE: RECEIVE_MESSAGE,
	MESSAGE_READ: MESSAGE_READ,
	MESSAGE_DELIVERED: MESSAGE_DELIVERED,
	MESSAGE_LIKED: MESSAGE_LIKED,
	MESSAGE_EDITED: MESSAGE_EDITED,
	MESSAGE_DELETED: MESSAGE_DELETED,
}


def user_room(user_id: str) -> str:
	return f"user:{user_id}"


def chat_room(chat_id: str) -> str:
	return f"chat:{chat_id}"


def message_created(message: MessageOut) -> dict:
	return message.to_wire()


def message_edited(message_id: str, chat_id: str, content: str) -> dict:
	return {"messageId": message_id, "chatId": chat_id, "content": content, "isEdited": True}


def message_deleted(message_id: str, chat_id: str) -> dict:
	return {"messageId": message_id, "chatId": chat_id}


def message_liked(message_id: str, chat_id: str, likes: Iterable[str]) -> dict:
	return {"messageId": message_id, "chatId": chat_id, "likes": list(likes)}


def message_read(message_id: str, chat_id: str, user_id: str, read_by: Iterable[ReceiptOut]) -> dict:
	return {
		"messageId": message_id,
		"chatId": chat_id,
		"userId": user_id,
		"readBy": [receipt.to_wire() for receipt in read_by],
	}


def online_users(user_ids: Iterable[str]) -> dict:
	return {"userIds": sorted(user_ids)}


def user_online(user_id: str) -> dict:
	return {"userId": user_id}


def user_offline(user_id: str, last_seen: Optional[datetime]) -> dict:
	return {"userId": user_id, "lastSeen": last_seen.isoformat() if last_seen else None}


def typing(chat_id: str, user_id: Optional[str], user_name: Optional[str] = None) -> dict:
	payload = {"chatId": chat_id, "userId": user_id}
	if user_name is not None:
		payload["userName"] = user_name
	return payload

