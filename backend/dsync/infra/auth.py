"""Authentication helpers for FastAPI endpoints and the live channel.

Bearer JWTs are always accepted. Development environments additionally accept
an `X-User-Id` header so local tools can act as any user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from dsync.infra import jwt as jwt_helper
from dsync.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	name = payload.get("name") or payload.get("display_name")
	return AuthenticatedUser(id=sub, display_name=str(name) if name is not None else None)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the actor for a REST call."""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id and x_user_id.strip():
		return AuthenticatedUser(id=x_user_id.strip())
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


async def get_socket_id(x_socket_id: Optional[str] = Header(default=None, alias="X-Socket-Id")) -> Optional[str]:
	"""Live connection that originated a REST action, skipped during fan-out."""
	if x_socket_id and x_socket_id.strip():
		return x_socket_id.strip()
	return None


def parse_socket_token(token: Optional[str]) -> Optional[str]:
	"""Return the verified user id carried by a handshake token, or None when absent.

	Raises ValueError for a token that is present but invalid.
	"""
	token = (token or "").strip()
	if not token:
		return None
	if token.lower().startswith("bearer "):
		token = token[7:].strip()
	try:
		user = verify_access_jwt(token)
	except HTTPException as exc:
		raise ValueError("invalid_token") from exc
	return user.id
