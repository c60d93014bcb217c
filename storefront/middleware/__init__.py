"""
Actor + coarse permission middleware.

Runs on every request under /api:
  1. Decode the bearer token (if any) → request.state.actor
  2. Resolve (resource, action) from the path and method
  3. Public pairs pass; otherwise require an actor whose role could ever
     perform the action. Ownership and hierarchy are decided by the services.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from storefront.auth.helpers import actor_from_claims, decode_access_token
from storefront.rbac import evaluator, resolve_resource_action
from storefront.utils import Logger, error_response
from storefront.utils.exceptions import UnauthenticatedError

logger = Logger("middleware")


class ActorMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.actor = None

        auth_header = request.headers.get("Authorization")
        if auth_header:
            if not auth_header.startswith("Bearer "):
                return error_response(
                    "Invalid token format. Expected 'Bearer <token>'", code=401
                )
            token = auth_header.split(" ", 1)[1].strip()
            try:
                request.state.actor = actor_from_claims(decode_access_token(token))
            except UnauthenticatedError as exc:
                return error_response(exc.detail, code=401)

        resolved = resolve_resource_action(request)
        if resolved is None:
            return await call_next(request)

        resource, action = resolved
        if evaluator.is_public(resource, action):
            return await call_next(request)

        actor = request.state.actor
        if actor is None:
            return error_response("Not authenticated", code=401)

        if not evaluator.can(actor.role, resource, action):
            logger.warning(
                f"Coarse gate denied {actor.role} on {resource}:{action} "
                f"({request.method} {request.url.path})"
            )
            return error_response("Access denied", code=403)

        return await call_next(request)
