"""Authentication helpers for FastAPI endpoints.

Bearer JWTs are always accepted. The ``X-User-Id`` / ``X-User-Roles`` headers
are only honoured in development.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from intake.infra import jwt as jwt_helper
from intake.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	roles: Tuple[str, ...] = ()

	def has_role(self, role: str) -> bool:
		wanted = role.upper()
		return any(existing.upper() == wanted for existing in self.roles)


_bearer_scheme = HTTPBearer(auto_error=False)


def _split_roles(claim: object) -> Tuple[str, ...]:
	if isinstance(claim, (list, tuple)):
		return tuple(str(r).strip() for r in claim if str(r).strip())
	if isinstance(claim, str):
		return tuple(part.strip() for part in claim.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT; roles may be a list or a comma-separated string."""
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from None

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	return AuthenticatedUser(id=sub, roles=_split_roles(payload.get("roles") or payload.get("role")))


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user."""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip(), roles=_split_roles(x_user_roles))

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
