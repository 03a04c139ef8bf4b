"""FastAPI routes for chat listing and creation."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status

from dsync.domain.chat import container
from dsync.domain.chat.schemas import AccessChatRequest, ChatOut, CreateGroupRequest, Envelope
from dsync.domain.chat.service import ChatService
from dsync.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("", response_model=Envelope[List[ChatOut]])
async def list_chats_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(container.get_service),
) -> Envelope[List[ChatOut]]:
	views = await service.list_chats(auth_user.id)
	return Envelope[List[ChatOut]](data=[ChatOut.from_view(view) for view in views])


@router.post("", response_model=Envelope[ChatOut])
async def access_chat_endpoint(
	payload: AccessChatRequest,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(container.get_service),
) -> Envelope[ChatOut]:
	view, created = await service.access_direct(auth_user.id, payload.user_id)
	response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
	return Envelope[ChatOut](message="created" if created else "ok", data=ChatOut.from_view(view))


@router.post("/group", response_model=Envelope[ChatOut], status_code=status.HTTP_201_CREATED)
async def create_group_endpoint(
	payload: CreateGroupRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(container.get_service),
) -> Envelope[ChatOut]:
	view = await service.create_group(auth_user.id, payload.name, payload.users)
	return Envelope[ChatOut](message="created", data=ChatOut.from_view(view))


@router.get("/{chat_id}", response_model=Envelope[ChatOut])
async def get_chat_endpoint(
	chat_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(container.get_service),
) -> Envelope[ChatOut]:
	view = await service.get_chat(auth_user.id, chat_id)
	return Envelope[ChatOut](data=ChatOut.from_view(view))
