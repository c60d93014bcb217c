"""
Identity adapter: bearer JWT → Actor.

Tokens are issued elsewhere; this side only verifies the signature and reads
the `sub` and `role` claims.
"""

from typing import Optional

from jose import JWTError, jwt
from starlette.requests import Request

from storefront.config import settings
from storefront.rbac import Actor
from storefront.utils.exceptions import UnauthenticatedError


def decode_access_token(token: str) -> dict:
    """Decode and verify a JWT. Raises 401 on failure."""
    try:
        return jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
    except JWTError:
        raise UnauthenticatedError("Invalid or expired token")


def actor_from_claims(claims: dict) -> Actor:
    subject = claims.get("sub")
    role = claims.get("role")
    if not subject or not isinstance(role, str):
        raise UnauthenticatedError("Token is missing subject or role")
    return Actor(id=str(subject), role=role)


def get_current_actor(request: Request) -> Optional[Actor]:
    """FastAPI dependency: the actor set by ActorMiddleware, or None."""
    return getattr(request.state, "actor", None)
