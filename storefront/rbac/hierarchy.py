"""
Hierarchy Comparator: rank rules for administrative mutations on accounts.

  update  : self, wildcard, or rank(actor) > rank(target)
  role    : never on self; needs "assign_roles" and rank(new) < rank(actor),
            unless wildcard
  delete  : wildcard, or rank(actor) > rank(target)
"""

from .guard import Actor, Decision, DenyKind
from .permissions import PermissionEvaluator


class HierarchyComparator:
    def __init__(self, evaluator: PermissionEvaluator):
        self.evaluator = evaluator

    def outranks(self, actor_role: str | None, target_role: str | None) -> bool:
        return self.evaluator.rank_of(actor_role) > self.evaluator.rank_of(target_role)

    def check_update(self, actor: Actor, target_id: str, target_role: str) -> Decision:
        if actor.id == target_id:
            return Decision.allow()
        if self.evaluator.is_wildcard(actor.role):
            return Decision.allow()
        if self.outranks(actor.role, target_role):
            return Decision.allow()
        return Decision.deny(
            DenyKind.FORBIDDEN,
            f"'{actor.role}' cannot modify '{target_role}' at same or higher rank",
        )

    def check_role_assignment(
        self, actor: Actor, target_id: str, new_role: str
    ) -> Decision:
        if actor.id == target_id:
            return Decision.deny(DenyKind.FORBIDDEN, "actors cannot change their own role")
        if self.evaluator.is_wildcard(actor.role):
            return Decision.allow()
        if not self.evaluator.has_permission(actor.role, "assign_roles"):
            return Decision.deny(DenyKind.FORBIDDEN, "missing assign_roles")
        if not self.outranks(actor.role, new_role):
            return Decision.deny(
                DenyKind.FORBIDDEN,
                f"'{actor.role}' cannot grant '{new_role}' at or above its own rank",
            )
        return Decision.allow()

    def check_delete(self, actor: Actor, target_role: str) -> Decision:
        if self.evaluator.is_wildcard(actor.role):
            return Decision.allow()
        if self.outranks(actor.role, target_role):
            return Decision.allow()
        return Decision.deny(
            DenyKind.FORBIDDEN,
            f"'{actor.role}' cannot delete '{target_role}' at same or higher rank",
        )
