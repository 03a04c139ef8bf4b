"""FastAPI routes for the message synchronisation core."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, File, Form, Query, UploadFile, status

from dsync.domain.chat import container, models
from dsync.domain.chat.errors import InvalidArgument
from dsync.domain.chat.schemas import (
	DeletedOut,
	EditMessageRequest,
	Envelope,
	LikeRequest,
	LikesOut,
	MessageOut,
	MessagePageOut,
	ReadOut,
	ReceiptOut,
	SendMessageRequest,
)
from dsync.domain.chat.sync import MessageSyncCore
from dsync.infra.auth import AuthenticatedUser, get_current_user, get_socket_id
from dsync.settings import settings

router = APIRouter(prefix="/messages", tags=["messages"])


def _attachment_ref(payload: SendMessageRequest) -> Optional[models.Attachment]:
	if not payload.file_url:
		return None
	return models.Attachment(
		url=payload.file_url,
		file_name=payload.file_name or "",
		media_type=payload.media_type,
	)


@router.get("/item/{message_id}", response_model=Envelope[MessageOut])
async def get_message_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[MessageOut]:
	canonical = await core.get_message(auth_user.id, message_id)
	return Envelope[MessageOut](data=MessageOut.from_canonical(canonical))


@router.get("/{chat_id}", response_model=Envelope[MessagePageOut])
async def list_messages_endpoint(
	chat_id: str,
	page: int = Query(default=1, ge=1),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[MessagePageOut]:
	result = await core.list_messages(auth_user.id, chat_id, page=page, limit=limit)
	return Envelope[MessagePageOut](data=MessagePageOut.from_page(result))


@router.post("", response_model=Envelope[MessageOut], status_code=status.HTTP_201_CREATED)
async def send_message_endpoint(
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	socket_id: Optional[str] = Depends(get_socket_id),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[MessageOut]:
	canonical = await core.send(
		auth_user.id,
		payload.chat_id,
		payload.content,
		payload.kind,
		attachment=_attachment_ref(payload),
		reply_to_id=payload.reply_to,
		client_msg_id=payload.client_msg_id,
		origin_sid=socket_id,
	)
	return Envelope[MessageOut](message="sent", data=MessageOut.from_canonical(canonical))


@router.post("/upload", response_model=Envelope[MessageOut], status_code=status.HTTP_201_CREATED)
async def upload_message_endpoint(
	file: UploadFile = File(...),
	chat_id: str = Form(..., alias="chatId"),
	reply_to: Optional[str] = Form(default=None, alias="replyTo"),
	client_msg_id: Optional[str] = Form(default=None, alias="clientMsgId"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	socket_id: Optional[str] = Depends(get_socket_id),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[MessageOut]:
	data = await file.read(settings.attachment_max_bytes + 1)
	if len(data) > settings.attachment_max_bytes:
		raise InvalidArgument("file_too_large", status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
	canonical = await core.upload_and_send(
		auth_user.id,
		chat_id,
		data,
		media_type=file.content_type,
		file_name=file.filename or "file",
		reply_to_id=reply_to or None,
		client_msg_id=client_msg_id or None,
		origin_sid=socket_id,
	)
	return Envelope[MessageOut](message="sent", data=MessageOut.from_canonical(canonical))


@router.put("/{message_id}/edit", response_model=Envelope[MessageOut])
async def edit_message_endpoint(
	message_id: str,
	payload: EditMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	socket_id: Optional[str] = Depends(get_socket_id),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[MessageOut]:
	canonical = await core.edit(auth_user.id, message_id, payload.content, origin_sid=socket_id)
	return Envelope[MessageOut](message="edited", data=MessageOut.from_canonical(canonical))


@router.delete("/{message_id}", response_model=Envelope[DeletedOut])
async def delete_message_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	socket_id: Optional[str] = Depends(get_socket_id),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[DeletedOut]:
	deleted = await core.delete(auth_user.id, message_id, origin_sid=socket_id)
	return Envelope[DeletedOut](message="deleted", data=DeletedOut(message_id=deleted.id, chat_id=deleted.chat_id))


@router.put("/{message_id}/like", response_model=Envelope[LikesOut])
async def like_message_endpoint(
	message_id: str,
	payload: Optional[LikeRequest] = Body(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	socket_id: Optional[str] = Depends(get_socket_id),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[LikesOut]:
	"""Toggle the like without a body; `{"liked": bool}` sets it idempotently."""
	if payload is None:
		likes = await core.toggle_like(auth_user.id, message_id, origin_sid=socket_id)
	else:
		likes = await core.set_liked(auth_user.id, message_id, payload.liked, origin_sid=socket_id)
	return Envelope[LikesOut](data=LikesOut(message_id=message_id, likes=likes))


@router.put("/{message_id}/read", response_model=Envelope[ReadOut])
async def read_message_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	socket_id: Optional[str] = Depends(get_socket_id),
	core: MessageSyncCore = Depends(container.get_core),
) -> Envelope[ReadOut]:
	read_by = await core.mark_read(auth_user.id, message_id, origin_sid=socket_id)
	return Envelope[ReadOut](
		message="read",
		data=ReadOut(message_id=message_id, read_by=[ReceiptOut.from_receipt(r) for r in read_by]),
	)
