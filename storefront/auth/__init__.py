from .helpers import decode_access_token, actor_from_claims, get_current_actor

__all__ = ["decode_access_token", "actor_from_claims", "get_current_actor"]
