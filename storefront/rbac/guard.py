"""
Authorization Guard.

Decision procedure for every mutating call (first match wins):
  1. no actor                                   → Deny(UNAUTHENTICATED)
  2. actor role holds "all"                     → Allow
  3. actor role holds any required permission   → Allow
  4. actor owns the resource and holds the
     own-resource variant of a required token   → Allow
  5. otherwise                                  → Deny(FORBIDDEN)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from storefront.utils import Logger
from storefront.utils.exceptions import ForbiddenError, UnauthenticatedError
from .permissions import PermissionEvaluator
from .roles import own_variant

logger = Logger("rbac.guard")


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as resolved by the identity adapter."""

    id: str
    role: str


@dataclass(frozen=True)
class OwnedResource:
    id: str
    owner_id: Optional[str]

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any], owner_field: str = "owner_id"):
        owner = doc.get(owner_field)
        return cls(
            id=str(doc.get("_id")),
            owner_id=str(owner) if owner is not None else None,
        )


class DenyKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    kind: Optional[DenyKind] = None
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, kind: DenyKind, reason: str) -> "Decision":
        return cls(allowed=False, kind=kind, reason=reason)

    def raise_for_denial(self) -> None:
        """Raise the typed error for a denial. The internal reason is not exposed."""
        if self.allowed:
            return
        if self.kind is DenyKind.UNAUTHENTICATED:
            raise UnauthenticatedError()
        raise ForbiddenError()


class AuthorizationGuard:
    def __init__(self, evaluator: PermissionEvaluator):
        self.evaluator = evaluator

    def evaluate(
        self,
        actor: Optional[Actor],
        required_permissions: Iterable[str],
        resource: Optional[OwnedResource] = None,
    ) -> Decision:
        if actor is None or not actor.id:
            return Decision.deny(DenyKind.UNAUTHENTICATED, "no authenticated actor")

        if self.evaluator.is_wildcard(actor.role):
            return Decision.allow()

        required = list(required_permissions)
        if self.evaluator.has_any_permission(actor.role, required):
            return Decision.allow()

        if resource is not None and resource.owner_id == actor.id:
            own = [own_variant(p) for p in required]
            if self.evaluator.has_any_permission(actor.role, own):
                return Decision.allow()

        return Decision.deny(
            DenyKind.FORBIDDEN,
            f"role '{actor.role}' lacks any of {required}",
        )

    def enforce(
        self,
        actor: Optional[Actor],
        required_permissions: Iterable[str],
        resource: Optional[OwnedResource] = None,
    ) -> Actor:
        """Evaluate and raise on denial. Returns the actor for convenience."""
        decision = self.evaluate(actor, required_permissions, resource)
        if not decision.allowed:
            logger.warning(
                f"Denied ({decision.kind.value}) actor={getattr(actor, 'id', None)} "
                f"resource={getattr(resource, 'id', None)}: {decision.reason}"
            )
            decision.raise_for_denial()
        return actor

    def authenticate(self, actor: Optional[Actor]) -> Actor:
        """Step 1 only: require an authenticated actor."""
        if actor is None or not actor.id:
            Decision.deny(DenyKind.UNAUTHENTICATED, "no actor").raise_for_denial()
        return actor
