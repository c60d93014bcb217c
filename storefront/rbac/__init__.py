from storefront.config import settings

from .roles import (
    DEFAULT_ROLES,
    WILDCARD,
    Role,
    RoleTable,
    build_configured_role_table,
    load_role_table,
    own_variant,
)
from .permissions import PermissionEvaluator, resolve_resource_action
from .guard import Actor, AuthorizationGuard, Decision, DenyKind, OwnedResource
from .hierarchy import HierarchyComparator

# ── Process-wide, read-only policy objects (built once at import) ──
ROLE_TABLE: RoleTable = build_configured_role_table(settings.roles_config_path)
evaluator = PermissionEvaluator(ROLE_TABLE)
guard = AuthorizationGuard(evaluator)
hierarchy = HierarchyComparator(evaluator)

__all__ = [
    "DEFAULT_ROLES",
    "WILDCARD",
    "Role",
    "RoleTable",
    "load_role_table",
    "own_variant",
    "PermissionEvaluator",
    "resolve_resource_action",
    "Actor",
    "AuthorizationGuard",
    "Decision",
    "DenyKind",
    "OwnedResource",
    "HierarchyComparator",
    "ROLE_TABLE",
    "evaluator",
    "guard",
    "hierarchy",
]
