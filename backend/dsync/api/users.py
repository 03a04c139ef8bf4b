"""FastAPI routes for user profiles and presence."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dsync.domain.chat import container
from dsync.domain.chat.schemas import Envelope, PresenceOut, ProfileUpdateRequest, UserOut
from dsync.domain.chat.service import ChatService
from dsync.domain.presence.registry import PresenceRegistry
from dsync.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/users", tags=["users"])


@router.put("/me", response_model=Envelope[UserOut])
async def update_profile_endpoint(
	payload: ProfileUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(container.get_service),
) -> Envelope[UserOut]:
	profile = await service.upsert_profile(auth_user.id, payload.name, payload.avatar)
	return Envelope[UserOut](message="updated", data=UserOut.from_profile(profile))


@router.get("/{user_id}", response_model=Envelope[PresenceOut])
async def get_user_endpoint(
	user_id: str,
	_: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(container.get_service),
	registry: PresenceRegistry = Depends(container.get_registry),
) -> Envelope[PresenceOut]:
	profile = await service.get_profile(user_id)
	return Envelope[PresenceOut](
		data=PresenceOut(
			user=UserOut.from_profile(profile),
			online=registry.is_online(user_id),
			last_seen=await registry.last_seen(user_id),
		)
	)
