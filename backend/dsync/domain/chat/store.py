"""Persistent store for chats, messages, receipts and user profiles.

`MemoryChatStore` backs tests and single-node development; `PostgresChatStore`
is used whenever an asyncpg pool is configured (see `container`).
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import asyncpg

from dsync.domain.chat import models
from dsync.domain.chat.errors import Internal

RECEIPT_READ = "read"
RECEIPT_DELIVERED = "delivered"


class ChatStore(Protocol):
	async def get_chat(self, chat_id: str) -> Optional[models.Chat]:
		...

	async def create_chat(self, chat: models.Chat) -> Tuple[models.Chat, bool]:
		"""Insert a chat; a direct chat whose key already exists returns the stored one."""
		...

	async def list_chats_for_user(self, user_id: str) -> List[models.Chat]:
		...

	async def set_latest_message(self, chat_id: str, message_id: str, at: datetime) -> None:
		...

	async def insert_message(self, message: models.Message) -> Tuple[models.Message, bool]:
		"""Insert a message; a repeated (chat, client_msg_id) returns the stored one."""
		...

	async def get_message(self, message_id: str) -> Optional[models.Message]:
		...

	async def get_messages(self, message_ids: Iterable[str]) -> Dict[str, models.Message]:
		...

	async def list_messages(self, chat_id: str, *, offset: int, limit: int) -> List[models.Message]:
		"""Messages of a chat, newest first."""
		...

	async def update_content(self, message_id: str, content: str) -> Optional[models.Message]:
		...

	async def delete_message(self, message_id: str) -> bool:
		...

	async def add_like(self, message_id: str, user_id: str) -> Optional[List[str]]:
		...

	async def remove_like(self, message_id: str, user_id: str) -> Optional[List[str]]:
		...

	async def add_receipts(self, message_id: str, kind: str, receipts: Sequence[models.Receipt]) -> Optional[List[models.Receipt]]:
		"""Append receipts, ignoring users that already have one of this kind."""
		...

	async def upsert_profile(self, profile: models.UserProfile) -> models.UserProfile:
		...

	async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, models.UserProfile]:
		...


class MemoryChatStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._seq = itertools.count(1)
		self.chats: Dict[str, models.Chat] = {}
		self.direct_index: Dict[str, str] = {}
		self.messages: Dict[str, models.Message] = {}
		self.client_index: Dict[Tuple[str, str], str] = {}
		self.profiles: Dict[str, models.UserProfile] = {}

	async def get_chat(self, chat_id: str) -> Optional[models.Chat]:
		async with self._lock:
			chat = self.chats.get(chat_id)
			return replace(chat) if chat else None

	async def create_chat(self, chat: models.Chat) -> Tuple[models.Chat, bool]:
		async with self._lock:
			if chat.direct_key:
				existing_id = self.direct_index.get(chat.direct_key)
				if existing_id:
					return replace(self.chats[existing_id]), False
				self.direct_index[chat.direct_key] = chat.id
			self.chats[chat.id] = replace(chat)
			return replace(chat), True

	async def list_chats_for_user(self, user_id: str) -> List[models.Chat]:
		async with self._lock:
			chats = [replace(chat) for chat in self.chats.values() if chat.is_member(user_id)]
		chats.sort(key=lambda chat: (chat.updated_at, chat.id), reverse=True)
		return chats

	async def set_latest_message(self, chat_id: str, message_id: str, at: datetime) -> None:
		async with self._lock:
			chat = self.chats.get(chat_id)
			if chat is None:
				return
			chat.latest_message_id = message_id
			chat.updated_at = at

	async def insert_message(self, message: models.Message) -> Tuple[models.Message, bool]:
		async with self._lock:
			if message.client_msg_id:
				index_key = (message.chat_id, message.client_msg_id)
				existing_id = self.client_index.get(index_key)
				if existing_id and existing_id in self.messages:
					return self.messages[existing_id].copy(), False
				self.client_index[index_key] = message.id
			stored = message.copy()
			stored.seq = next(self._seq)
			self.messages[stored.id] = stored
			return stored.copy(), True

	async def get_message(self, message_id: str) -> Optional[models.Message]:
		async with self._lock:
			message = self.messages.get(message_id)
			return message.copy() if message else None

	async def get_messages(self, message_ids: Iterable[str]) -> Dict[str, models.Message]:
		async with self._lock:
			return {mid: self.messages[mid].copy() for mid in set(message_ids) if mid in self.messages}

	async def list_messages(self, chat_id: str, *, offset: int, limit: int) -> List[models.Message]:
		async with self._lock:
			rows = [message for message in self.messages.values() if message.chat_id == chat_id]
		rows.sort(key=lambda message: (message.created_at, message.seq), reverse=True)
		return [message.copy() for message in rows[offset : offset + limit]]

	async def update_content(self, message_id: str, content: str) -> Optional[models.Message]:
		async with self._lock:
			message = self.messages.get(message_id)
			if message is None:
				return None
			message.content = content
			message.edited = True
			return message.copy()

	async def delete_message(self, message_id: str) -> bool:
		async with self._lock:
			message = self.messages.pop(message_id, None)
			if message is None:
				return False
			if message.client_msg_id:
				self.client_index.pop((message.chat_id, message.client_msg_id), None)
			return True

	async def add_like(self, message_id: str, user_id: str) -> Optional[List[str]]:
		async with self._lock:
			message = self.messages.get(message_id)
			if message is None:
				return None
			if user_id not in message.likes:
				message.likes.append(user_id)
			return list(message.likes)

	async def remove_like(self, message_id: str, user_id: str) -> Optional[List[str]]:
		async with self._lock:
			message = self.messages.get(message_id)
			if message is None:
				return None
			message.likes = [liker for liker in message.likes if liker != user_id]
			return list(message.likes)

	async def add_receipts(self, message_id: str, kind: str, receipts: Sequence[models.Receipt]) -> Optional[List[models.Receipt]]:
		async with self._lock:
			message = self.messages.get(message_id)
			if message is None:
				return None
			target = message.read_by if kind == RECEIPT_READ else message.delivered_to
			present = {receipt.user_id for receipt in target}
			for receipt in receipts:
				if receipt.user_id in present:
					continue
				target.append(receipt)
				present.add(receipt.user_id)
			return list(target)

	async def upsert_profile(self, profile: models.UserProfile) -> models.UserProfile:
		async with self._lock:
			self.profiles[profile.user_id] = replace(profile)
			return replace(profile)

	async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, models.UserProfile]:
		async with self._lock:
			return {uid: replace(self.profiles[uid]) for uid in set(user_ids) if uid in self.profiles}


_MESSAGE_COLUMNS = """
	m.id, m.seq, m.chat_id, m.sender_id, m.kind, m.content, m.created_at, m.edited,
	m.reply_to_id, m.client_msg_id, m.attachment_url, m.attachment_name,
	m.attachment_type, m.attachment_size, m.attachment_key
"""


def _chat_from_record(record: asyncpg.Record, members: Sequence[str]) -> models.Chat:
	return models.Chat(
		id=record["id"],
		kind=record["kind"],
		members=tuple(members),
		name=record["name"],
		admin_id=record["admin_id"],
		latest_message_id=record["latest_message_id"],
		direct_key=record["direct_key"],
		created_at=record["created_at"],
		updated_at=record["updated_at"],
	)


def _message_from_record(record: asyncpg.Record) -> models.Message:
	attachment = None
	if record["attachment_url"]:
		attachment = models.Attachment(
			url=record["attachment_url"],
			file_name=record["attachment_name"] or "",
			media_type=record["attachment_type"],
			size_bytes=record["attachment_size"],
			key=record["attachment_key"],
		)
	return models.Message(
		id=record["id"],
		seq=int(record["seq"]),
		chat_id=record["chat_id"],
		sender_id=record["sender_id"],
		kind=record["kind"],
		content=record["content"] or "",
		created_at=record["created_at"],
		edited=bool(record["edited"]),
		reply_to_id=record["reply_to_id"],
		client_msg_id=record["client_msg_id"],
		attachment=attachment,
	)


class PostgresChatStore:
	"""asyncpg-backed store; schema lives in migrations/0001_chat_sync.sql."""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self._pool = pool

	async def _members(self, conn: asyncpg.Connection, chat_ids: Sequence[str]) -> Dict[str, List[str]]:
		rows = await conn.fetch(
			"SELECT chat_id, user_id FROM chat_members WHERE chat_id = ANY($1::text[]) ORDER BY joined_at, user_id",
			list(chat_ids),
		)
		members: Dict[str, List[str]] = {chat_id: [] for chat_id in chat_ids}
		for row in rows:
			members[row["chat_id"]].append(row["user_id"])
		return members

	async def _hydrate(self, conn: asyncpg.Connection, records: Sequence[asyncpg.Record]) -> List[models.Message]:
		messages = [_message_from_record(record) for record in records]
		if not messages:
			return messages
		ids = [message.id for message in messages]
		by_id = {message.id: message for message in messages}
		likes = await conn.fetch(
			"SELECT message_id, user_id FROM message_likes WHERE message_id = ANY($1::text[]) ORDER BY created_at, user_id",
			ids,
		)
		for row in likes:
			by_id[row["message_id"]].likes.append(row["user_id"])
		receipts = await conn.fetch(
			"SELECT message_id, user_id, kind, at FROM message_receipts WHERE message_id = ANY($1::text[]) ORDER BY at, user_id",
			ids,
		)
		for row in receipts:
			receipt = models.Receipt(user_id=row["user_id"], at=row["at"])
			target = by_id[row["message_id"]]
			if row["kind"] == RECEIPT_READ:
				target.read_by.append(receipt)
			else:
				target.delivered_to.append(receipt)
		return messages

	async def get_chat(self, chat_id: str) -> Optional[models.Chat]:
		async with self._pool.acquire() as conn:
			record = await conn.fetchrow("SELECT * FROM chats WHERE id = $1", chat_id)
			if record is None:
				return None
			members = await self._members(conn, [chat_id])
		return _chat_from_record(record, members[chat_id])

	async def create_chat(self, chat: models.Chat) -> Tuple[models.Chat, bool]:
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				inserted = await conn.fetchval(
					"""
					INSERT INTO chats (id, kind, name, admin_id, direct_key, created_at, updated_at)
					VALUES ($1, $2, $3, $4, $5, $6, $7)
					ON CONFLICT (direct_key) DO NOTHING
					RETURNING id
					""",
					chat.id,
					chat.kind,
					chat.name,
					chat.admin_id,
					chat.direct_key,
					chat.created_at,
					chat.updated_at,
				)
				if inserted is None:
					existing_id = await conn.fetchval("SELECT id FROM chats WHERE direct_key = $1", chat.direct_key)
				else:
					await conn.executemany(
						"INSERT INTO chat_members (chat_id, user_id, joined_at) VALUES ($1, $2, $3)",
						[(chat.id, member, chat.created_at) for member in chat.members],
					)
		if inserted is None:
			existing = await self.get_chat(existing_id)
			if existing is None:
				raise Internal("direct_chat_missing")
			return existing, False
		return chat, True

	async def list_chats_for_user(self, user_id: str) -> List[models.Chat]:
		async with self._pool.acquire() as conn:
			records = await conn.fetch(
				"""
				SELECT c.* FROM chats c
				JOIN chat_members cm ON cm.chat_id = c.id
				WHERE cm.user_id = $1
				ORDER BY c.updated_at DESC, c.id DESC
				""",
				user_id,
			)
			members = await self._members(conn, [record["id"] for record in records])
		return [_chat_from_record(record, members[record["id"]]) for record in records]

	async def set_latest_message(self, chat_id: str, message_id: str, at: datetime) -> None:
		async with self._pool.acquire() as conn:
			await conn.execute(
				"UPDATE chats SET latest_message_id = $2, updated_at = $3 WHERE id = $1",
				chat_id,
				message_id,
				at,
			)

	async def insert_message(self, message: models.Message) -> Tuple[models.Message, bool]:
		attachment = message.attachment
		async with self._pool.acquire() as conn:
			record = await conn.fetchrow(
				f"""
				INSERT INTO messages AS m (
					id, chat_id, sender_id, kind, content, created_at, edited, reply_to_id,
					client_msg_id, attachment_url, attachment_name, attachment_type,
					attachment_size, attachment_key
				)
				VALUES ($1, $2, $3, $4, $5, $6, FALSE, $7, $8, $9, $10, $11, $12, $13)
				ON CONFLICT (chat_id, client_msg_id) DO NOTHING
				RETURNING {_MESSAGE_COLUMNS}
				""",
				message.id,
				message.chat_id,
				message.sender_id,
				message.kind,
				message.content,
				message.created_at,
				message.reply_to_id,
				message.client_msg_id,
				attachment.url if attachment else None,
				attachment.file_name if attachment else None,
				attachment.media_type if attachment else None,
				attachment.size_bytes if attachment else None,
				attachment.key if attachment else None,
			)
			if record is not None:
				return _message_from_record(record), True
			existing = await conn.fetchrow(
				f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.chat_id = $1 AND m.client_msg_id = $2",
				message.chat_id,
				message.client_msg_id,
			)
			hydrated = await self._hydrate(conn, [existing])
		return hydrated[0], False

	async def get_message(self, message_id: str) -> Optional[models.Message]:
		found = await self.get_messages([message_id])
		return found.get(message_id)

	async def get_messages(self, message_ids: Iterable[str]) -> Dict[str, models.Message]:
		ids = list(set(message_ids))
		if not ids:
			return {}
		async with self._pool.acquire() as conn:
			records = await conn.fetch(
				f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.id = ANY($1::text[])",
				ids,
			)
			messages = await self._hydrate(conn, records)
		return {message.id: message for message in messages}

	async def list_messages(self, chat_id: str, *, offset: int, limit: int) -> List[models.Message]:
		async with self._pool.acquire() as conn:
			records = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS} FROM messages m
				WHERE m.chat_id = $1
				ORDER BY m.created_at DESC, m.seq DESC
				OFFSET $2 LIMIT $3
				""",
				chat_id,
				offset,
				limit,
			)
			return await self._hydrate(conn, records)

	async def update_content(self, message_id: str, content: str) -> Optional[models.Message]:
		async with self._pool.acquire() as conn:
			updated = await conn.fetchval(
				"UPDATE messages SET content = $2, edited = TRUE WHERE id = $1 RETURNING id",
				message_id,
				content,
			)
		if updated is None:
			return None
		return await self.get_message(message_id)

	async def delete_message(self, message_id: str) -> bool:
		async with self._pool.acquire() as conn:
			deleted = await conn.fetchval("DELETE FROM messages WHERE id = $1 RETURNING id", message_id)
		return deleted is not None

	async def _likes(self, conn: asyncpg.Connection, message_id: str) -> Optional[List[str]]:
		exists = await conn.fetchval("SELECT 1 FROM messages WHERE id = $1", message_id)
		if not exists:
			return None
		rows = await conn.fetch(
			"SELECT user_id FROM message_likes WHERE message_id = $1 ORDER BY created_at, user_id",
			message_id,
		)
		return [row["user_id"] for row in rows]

	async def add_like(self, message_id: str, user_id: str) -> Optional[List[str]]:
		async with self._pool.acquire() as conn:
			try:
				await conn.execute(
					"INSERT INTO message_likes (message_id, user_id) VALUES ($1, $2) ON CONFLICT DO NOTHING",
					message_id,
					user_id,
				)
			except asyncpg.ForeignKeyViolationError:
				return None
			return await self._likes(conn, message_id)

	async def remove_like(self, message_id: str, user_id: str) -> Optional[List[str]]:
		async with self._pool.acquire() as conn:
			await conn.execute(
				"DELETE FROM message_likes WHERE message_id = $1 AND user_id = $2",
				message_id,
				user_id,
			)
			return await self._likes(conn, message_id)

	async def add_receipts(self, message_id: str, kind: str, receipts: Sequence[models.Receipt]) -> Optional[List[models.Receipt]]:
		async with self._pool.acquire() as conn:
			exists = await conn.fetchval("SELECT 1 FROM messages WHERE id = $1", message_id)
			if not exists:
				return None
			if receipts:
				await conn.executemany(
					"""
					INSERT INTO message_receipts (message_id, user_id, kind, at)
					VALUES ($1, $2, $3, $4)
					ON CONFLICT (message_id, user_id, kind) DO NOTHING
					""",
					[(message_id, receipt.user_id, kind, receipt.at) for receipt in receipts],
				)
			rows = await conn.fetch(
				"SELECT user_id, at FROM message_receipts WHERE message_id = $1 AND kind = $2 ORDER BY at, user_id",
				message_id,
				kind,
			)
		return [models.Receipt(user_id=row["user_id"], at=row["at"]) for row in rows]

	async def upsert_profile(self, profile: models.UserProfile) -> models.UserProfile:
		async with self._pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO users (id, name, avatar, updated_at)
				VALUES ($1, $2, $3, NOW())
				ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, avatar = EXCLUDED.avatar, updated_at = NOW()
				""",
				profile.user_id,
				profile.name,
				profile.avatar,
			)
		return profile

	async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, models.UserProfile]:
		ids = list(set(user_ids))
		if not ids:
			return {}
		async with self._pool.acquire() as conn:
			rows = await conn.fetch("SELECT id, name, avatar FROM users WHERE id = ANY($1::text[])", ids)
		return {row["id"]: models.UserProfile(user_id=row["id"], name=row["name"], avatar=row["avatar"]) for row in rows}
