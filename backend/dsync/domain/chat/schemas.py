"""Pydantic schemas shared by the REST API, live events and the client model.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import CanonicalMessage, ChatView, MessagePage, Receipt, ReplyPreview, UserProfile

T = TypeVar("T")


class WireModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	def to_wire(self) -> dict:
		return self.model_dump(mode="json", by_alias=True)


class Envelope(WireModel, Generic[T]):
	success: bool = True
	message: str = "ok"
	data: Optional[T] = None


class UserOut(WireModel):
	id: str
	name: Optional[str] = None
	avatar: Optional[str] = None

	@classmethod
	def from_profile(cls, profile: UserProfile) -> "UserOut":
		return cls(id=profile.user_id, name=profile.name, avatar=profile.avatar)


class ReceiptOut(WireModel):
	user_id: str
	at: datetime

	@classmethod
	def from_receipt(cls, receipt: Receipt) -> "ReceiptOut":
		return cls(user_id=receipt.user_id, at=receipt.at)


class ReplyOut(WireModel):
	id: str
	kind: str
	content: str
	sender: UserOut

	@classmethod
	def from_preview(cls, preview: ReplyPreview) -> "ReplyOut":
		return cls(
			id=preview.id,
			kind=preview.kind,
			content=preview.content,
			sender=UserOut.from_profile(preview.sender),
		)


class MessageOut(WireModel):
	id: str
	chat_id: str
	sender: UserOut
	kind: str
	content: str = ""
	file_url: Optional[str] = None
	file_name: Optional[str] = None
	media_type: Optional[str] = None
	reply_to: Optional[ReplyOut] = None
	likes: List[str] = Field(default_factory=list)
	read_by: List[ReceiptOut] = Field(default_factory=list)
	delivered_to: List[ReceiptOut] = Field(default_factory=list)
	is_edited: bool = False
	created_at: datetime
	client_msg_id: Optional[str] = None
	seq: int = 0

	@classmethod
	def from_canonical(cls, canonical: CanonicalMessage) -> "MessageOut":
		message = canonical.message
		attachment = message.attachment
		return cls(
			id=message.id,
			chat_id=message.chat_id,
			sender=UserOut.from_profile(canonical.sender),
			kind=message.kind,
			content=message.content,
			file_url=attachment.url if attachment else None,
			file_name=attachment.file_name if attachment else None,
			media_type=attachment.media_type if attachment else None,
			reply_to=ReplyOut.from_preview(canonical.reply_to) if canonical.reply_to else None,
			likes=list(message.likes),
			read_by=[ReceiptOut.from_receipt(r) for r in message.read_by],
			delivered_to=[ReceiptOut.from_receipt(r) for r in message.delivered_to],
			is_edited=message.edited,
			created_at=message.created_at,
			client_msg_id=message.client_msg_id,
			seq=message.seq,
		)


class ChatOut(WireModel):
	id: str
	kind: str
	name: Optional[str] = None
	admin_id: Optional[str] = None
	members: List[UserOut]
	latest_message: Optional[MessageOut] = None
	created_at: datetime
	updated_at: datetime

	@classmethod
	def from_view(cls, view: ChatView) -> "ChatOut":
		chat = view.chat
		return cls(
			id=chat.id,
			kind=chat.kind,
			name=chat.name,
			admin_id=chat.admin_id,
			members=[UserOut.from_profile(p) for p in view.members],
			latest_message=MessageOut.from_canonical(view.latest_message) if view.latest_message else None,
			created_at=chat.created_at,
			updated_at=chat.updated_at,
		)


class MessagePageOut(WireModel):
	items: List[MessageOut]
	page: int
	limit: int
	has_more: bool

	@classmethod
	def from_page(cls, page: MessagePage) -> "MessagePageOut":
		return cls(
			items=[MessageOut.from_canonical(item) for item in page.items],
			page=page.page,
			limit=page.limit,
			has_more=page.has_more,
		)


class LikesOut(WireModel):
	message_id: str
	likes: List[str]


class ReadOut(WireModel):
	message_id: str
	read_by: List[ReceiptOut]


class DeletedOut(WireModel):
	message_id: str
	chat_id: str


class PresenceOut(WireModel):
	user: UserOut
	online: bool
	last_seen: Optional[datetime] = None


class SendMessageRequest(WireModel):
	chat_id: str = Field(..., min_length=1)
	content: Optional[str] = None
	kind: str = Field(default="text", validation_alias=AliasChoices("kind", "messageType", "message_type"))
	file_url: Optional[str] = None
	file_name: Optional[str] = None
	media_type: Optional[str] = None
	reply_to: Optional[str] = None
	client_msg_id: Optional[str] = Field(default=None, max_length=64, description="Client temp id, used for resend dedup")


class EditMessageRequest(WireModel):
	content: str


class LikeRequest(WireModel):
	liked: bool


class AccessChatRequest(WireModel):
	user_id: str = Field(..., min_length=1)


class CreateGroupRequest(WireModel):
	name: str
	users: List[str]


class ProfileUpdateRequest(WireModel):
	name: Optional[str] = Field(default=None, max_length=120)
	avatar: Optional[str] = Field(default=None, max_length=2048)
