"""Domain models for chats and messages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Tuple

CHAT_DIRECT = "direct"
CHAT_GROUP = "group"

KIND_TEXT = "text"
KIND_IMAGE = "image"
KIND_FILE = "file"
KIND_VOICE = "voice"

MESSAGE_KINDS = frozenset({KIND_TEXT, KIND_IMAGE, KIND_FILE, KIND_VOICE})
ATTACHMENT_KINDS = frozenset({KIND_IMAGE, KIND_FILE, KIND_VOICE})


@dataclass(slots=True)
class ConversationKey:
	"""Canonical key of a direct chat, independent of who opened it."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "ConversationKey":
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@property
	def value(self) -> str:
		return f"direct:{self.user_a}:{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)


@dataclass(slots=True)
class UserProfile:
	user_id: str
	name: Optional[str] = None
	avatar: Optional[str] = None

	@classmethod
	def placeholder(cls, user_id: str) -> "UserProfile":
		return cls(user_id=user_id)


@dataclass(slots=True)
class Attachment:
	url: str
	file_name: str
	media_type: Optional[str] = None
	size_bytes: Optional[int] = None
	key: Optional[str] = None


@dataclass(slots=True, frozen=True)
class Receipt:
	user_id: str
	at: datetime


@dataclass(slots=True)
class Chat:
	id: str
	kind: str
	members: Tuple[str, ...]
	created_at: datetime
	updated_at: datetime
	name: Optional[str] = None
	admin_id: Optional[str] = None
	latest_message_id: Optional[str] = None
	direct_key: Optional[str] = None

	def is_member(self, user_id: str) -> bool:
		return user_id in self.members

	def others(self, user_id: str) -> Tuple[str, ...]:
		return tuple(member for member in self.members if member != user_id)


@dataclass(slots=True)
class Message:
	id: str
	chat_id: str
	sender_id: str
	kind: str
	content: str
	created_at: datetime
	seq: int = 0
	attachment: Optional[Attachment] = None
	reply_to_id: Optional[str] = None
	client_msg_id: Optional[str] = None
	likes: List[str] = field(default_factory=list)
	read_by: List[Receipt] = field(default_factory=list)
	delivered_to: List[Receipt] = field(default_factory=list)
	edited: bool = False

	def has_read(self, user_id: str) -> bool:
		return any(receipt.user_id == user_id for receipt in self.read_by)

	def copy(self) -> "Message":
		return replace(
			self,
			likes=list(self.likes),
			read_by=list(self.read_by),
			delivered_to=list(self.delivered_to),
		)


@dataclass(slots=True)
class ReplyPreview:
	id: str
	kind: str
	content: str
	sender: UserProfile


@dataclass(slots=True)
class CanonicalMessage:
	"""A stored message with its sender and reply chain resolved for display."""

	message: Message
	sender: UserProfile
	reply_to: Optional[ReplyPreview] = None


@dataclass(slots=True)
class ChatView:
	chat: Chat
	members: Tuple[UserProfile, ...]
	latest_message: Optional[CanonicalMessage] = None


@dataclass(slots=True)
class MessagePage:
	items: List[CanonicalMessage]
	page: int
	limit: int
	has_more: bool
