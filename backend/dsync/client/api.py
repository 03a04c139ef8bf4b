"""Async REST client for the chat API with typed failures.

Non-2xx responses become the same `SyncError` subclasses the server raises.
Timeouts and transport errors become `Transient`: the outcome is unknown and
the action may already have been applied server-side.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from dsync.domain.chat.errors import Internal, Transient, from_status
from dsync.domain.chat.schemas import (
	ChatOut,
	LikesOut,
	MessageOut,
	MessagePageOut,
	PresenceOut,
	ReadOut,
	UserOut,
)
from dsync.settings import settings

LOGGER = logging.getLogger(__name__)


class ChatApi:
	def __init__(
		self,
		base_url: str,
		*,
		token: Optional[str] = None,
		user_id: Optional[str] = None,
		socket_id: Optional[Callable[[], Optional[str]]] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		headers: Dict[str, str] = {}
		if token:
			headers["Authorization"] = f"Bearer {token}"
		elif user_id:
			headers["X-User-Id"] = user_id
		self._socket_id = socket_id
		self._client = httpx.AsyncClient(
			base_url=base_url,
			headers=headers,
			timeout=timeout or settings.request_timeout_seconds,
			transport=transport,
		)

	async def __aenter__(self) -> "ChatApi":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.aclose()

	async def aclose(self) -> None:
		await self._client.aclose()

	async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
		headers = dict(kwargs.pop("headers", None) or {})
		sid = self._socket_id() if self._socket_id else None
		if sid:
			headers["X-Socket-Id"] = sid
		try:
			response = await self._client.request(method, path, headers=headers, **kwargs)
		except httpx.TimeoutException as exc:
			raise Transient("timeout", message="request timed out; outcome unknown") from exc
		except httpx.TransportError as exc:
			raise Transient("network", message=str(exc) or "network error") from exc
		try:
			body = response.json()
		except ValueError:
			body = {}
		if response.is_success:
			if not isinstance(body, dict):
				raise Internal("bad_response")
			return body.get("data")
		code = body.get("code") if isinstance(body, dict) else None
		message = body.get("message") if isinstance(body, dict) else None
		LOGGER.debug("api failure", extra={"path": path, "status": response.status_code, "code": code})
		raise from_status(response.status_code, code, message)

	async def list_chats(self) -> List[ChatOut]:
		data = await self._request("GET", "/chats")
		return [ChatOut.model_validate(item) for item in data or []]

	async def access_chat(self, user_id: str) -> ChatOut:
		return ChatOut.model_validate(await self._request("POST", "/chats", json={"userId": user_id}))

	async def create_group(self, name: str, users: List[str]) -> ChatOut:
		data = await self._request("POST", "/chats/group", json={"name": name, "users": users})
		return ChatOut.model_validate(data)

	async def list_messages(self, chat_id: str, *, page: int = 1, limit: Optional[int] = None) -> MessagePageOut:
		params: Dict[str, Any] = {"page": page}
		if limit is not None:
			params["limit"] = limit
		return MessagePageOut.model_validate(await self._request("GET", f"/messages/{chat_id}", params=params))

	async def get_message(self, message_id: str) -> MessageOut:
		return MessageOut.model_validate(await self._request("GET", f"/messages/item/{message_id}"))

	async def send(
		self,
		chat_id: str,
		content: Optional[str],
		*,
		kind: str = "text",
		reply_to: Optional[str] = None,
		client_msg_id: Optional[str] = None,
	) -> MessageOut:
		payload: Dict[str, Any] = {"chatId": chat_id, "content": content, "kind": kind}
		if reply_to:
			payload["replyTo"] = reply_to
		if client_msg_id:
			payload["clientMsgId"] = client_msg_id
		return MessageOut.model_validate(await self._request("POST", "/messages", json=payload))

	async def upload(
		self,
		chat_id: str,
		data: bytes,
		*,
		file_name: str,
		media_type: str = "application/octet-stream",
		reply_to: Optional[str] = None,
		client_msg_id: Optional[str] = None,
	) -> MessageOut:
		form: Dict[str, str] = {"chatId": chat_id}
		if reply_to:
			form["replyTo"] = reply_to
		if client_msg_id:
			form["clientMsgId"] = client_msg_id
		result = await self._request(
			"POST",
			"/messages/upload",
			data=form,
			files={"file": (file_name, data, media_type)},
			timeout=settings.attachment_timeout_seconds,
		)
		return MessageOut.model_validate(result)

	async def edit(self, message_id: str, content: str) -> MessageOut:
		data = await self._request("PUT", f"/messages/{message_id}/edit", json={"content": content})
		return MessageOut.model_validate(data)

	async def delete(self, message_id: str) -> None:
		await self._request("DELETE", f"/messages/{message_id}")

	async def toggle_like(self, message_id: str) -> List[str]:
		return LikesOut.model_validate(await self._request("PUT", f"/messages/{message_id}/like")).likes

	async def set_liked(self, message_id: str, liked: bool) -> List[str]:
		data = await self._request("PUT", f"/messages/{message_id}/like", json={"liked": liked})
		return LikesOut.model_validate(data).likes

	async def mark_read(self, message_id: str) -> ReadOut:
		return ReadOut.model_validate(await self._request("PUT", f"/messages/{message_id}/read"))

	async def update_profile(self, *, name: Optional[str] = None, avatar: Optional[str] = None) -> UserOut:
		data = await self._request("PUT", "/users/me", json={"name": name, "avatar": avatar})
		return UserOut.model_validate(data)

	async def get_user(self, user_id: str) -> PresenceOut:
		return PresenceOut.model_validate(await self._request("GET", f"/users/{user_id}"))
