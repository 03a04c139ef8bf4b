"""Guards run before any write; each raises a typed failure and never persists."""

from __future__ import annotations

from typing import Iterable, List, Optional

from dsync.domain.chat import models
from dsync.domain.chat.errors import AccessDenied, InvalidArgument, NotFound
from dsync.settings import settings

MIN_GROUP_INVITEES = 2
GROUP_NAME_MAX = 120


def require_chat(chat: Optional[models.Chat]) -> models.Chat:
	if chat is None:
		raise NotFound("chat_not_found")
	return chat


def require_message(message: Optional[models.Message]) -> models.Message:
	if message is None:
		raise NotFound("message_not_found")
	return message


def require_member(chat: models.Chat, user_id: str) -> None:
	if not chat.is_member(user_id):
		raise AccessDenied("not_chat_member")


def require_sender(message: models.Message, user_id: str) -> None:
	if message.sender_id != user_id:
		raise AccessDenied("not_message_sender")


def normalise_kind(kind: Optional[str]) -> str:
	value = (kind or models.KIND_TEXT).strip().lower()
	if value not in models.MESSAGE_KINDS:
		raise InvalidArgument("invalid_kind")
	return value


def validate_text(content: Optional[str]) -> str:
	"""Text content must be non-empty after trimming and within the length limit."""
	if content is None or not content.strip():
		raise InvalidArgument("content_required")
	if len(content) > settings.text_max_length:
		raise InvalidArgument("content_too_long")
	return content


def validate_payload(kind: str, content: Optional[str], attachment: Optional[models.Attachment]) -> str:
	"""Return the content to store for a send of `kind`."""
	if kind == models.KIND_TEXT:
		return validate_text(content)
	if attachment is None or not attachment.url:
		raise InvalidArgument("attachment_required")
	return validate_caption(content or attachment.file_name or "")


def validate_caption(content: str) -> str:
	if len(content) > settings.text_max_length:
		raise InvalidArgument("content_too_long")
	return content


def require_editable(message: models.Message) -> None:
	if message.kind != models.KIND_TEXT:
		raise InvalidArgument("only_text_editable")


def require_reply_in_chat(reply: Optional[models.Message], chat_id: str) -> models.Message:
	if reply is None or reply.chat_id != chat_id:
		raise InvalidArgument("invalid_reply")
	return reply


def validate_direct_pair(actor_id: str, other_id: str) -> None:
	if not other_id or not other_id.strip():
		raise InvalidArgument("user_id_required")
	if other_id == actor_id:
		raise InvalidArgument("cannot_chat_with_self")


def group_members(actor_id: str, invited: Iterable[str], name: Optional[str]) -> List[str]:
	"""Deduplicated member list for a new group, creator first."""
	if name is None or not name.strip():
		raise InvalidArgument("group_name_required")
	if len(name.strip()) > GROUP_NAME_MAX:
		raise InvalidArgument("group_name_too_long")
	others: List[str] = []
	for user_id in invited:
		user_id = str(user_id).strip()
		if user_id and user_id != actor_id and user_id not in others:
			others.append(user_id)
	if len(others) < MIN_GROUP_INVITEES:
		raise InvalidArgument("group_needs_more_users")
	return [actor_id, *others]
