"""
Permission evaluation against the role table.

A single evaluator answers both kinds of question the API asks:
  - permission-set queries:  has_permission("vendor", "manage_own_products")
  - resource/action queries: can("vendor", "products", "update")

Resource/action pairs are mapped onto permission tokens, so both queries are
decided by the same role table.
"""

from starlette.requests import Request

from .roles import RoleTable, own_variant

PUBLIC = None

# ── (resource, action) → permission tokens that may attempt it ───
# Own-resource variants are listed where ownership can grant the action;
# the Authorization Guard decides whether ownership actually holds.
RESOURCE_ACTIONS: dict[str, dict[str, list[str] | None]] = {
    "products": {
        "read": PUBLIC,
        "create": ["create_products", "manage_products"],
        "update": ["manage_products", own_variant("manage_products")],
        "delete": ["manage_products", own_variant("manage_products")],
    },
    "orders": {
        "read": ["read_orders", "manage_orders", own_variant("read_orders")],
        "create": ["place_orders"],
        "update": ["manage_orders", "update_order_status"],
        "delete": ["manage_orders", own_variant("manage_orders")],
    },
    "users": {
        "read": ["read_users", "manage_users", own_variant("read_users")],
        "update": ["manage_users", "assign_roles", own_variant("manage_users")],
        "delete": ["manage_users"],
    },
}

# ── Map HTTP methods to actions ──────────────────────────────────
METHOD_TO_ACTION: dict[str, str] = {
    "GET": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


def resolve_resource_action(request: Request) -> tuple[str, str] | None:
    """
    Derive (resource, action) from the request.

    URL pattern expected:  /api/{version}/{resource}/...
    Returns e.g. ("orders", "create") or None if the resource is unknown.
    """
    path_parts = request.url.path.strip("/").split("/")
    # path_parts = ["api", "v1", "orders", ...]
    resource = path_parts[2] if len(path_parts) > 2 else None
    action = METHOD_TO_ACTION.get(request.method)

    if resource not in RESOURCE_ACTIONS or not action:
        return None
    return resource, action


class PermissionEvaluator:
    """Pure queries over an immutable role table. Safe to share across tasks."""

    def __init__(self, roles: RoleTable):
        self.roles = roles

    def has_permission(self, role: str | None, permission: str) -> bool:
        config = self.roles.get(role) if role else None
        if config is None:
            return False
        if config.is_wildcard:
            return True
        return permission in config.permissions

    def has_any_permission(self, role: str | None, permissions) -> bool:
        return any(self.has_permission(role, p) for p in permissions)

    def rank_of(self, role: str | None) -> int:
        config = self.roles.get(role) if role else None
        return config.rank if config else 0

    def is_known_role(self, role: str | None) -> bool:
        return bool(role) and role in self.roles

    def is_wildcard(self, role: str | None) -> bool:
        config = self.roles.get(role) if role else None
        return bool(config and config.is_wildcard)

    @staticmethod
    def is_public(resource: str, action: str) -> bool:
        actions = RESOURCE_ACTIONS.get(resource, {})
        return action in actions and actions[action] is PUBLIC

    def can(self, role: str | None, resource: str, action: str) -> bool:
        """Resource/action query. Unknown pairs are denied."""
        actions = RESOURCE_ACTIONS.get(resource)
        if not actions or action not in actions:
            return False
        required = actions[action]
        if required is PUBLIC:
            return True
        return self.has_any_permission(role, required)
