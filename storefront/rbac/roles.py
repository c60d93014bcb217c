"""
Role definitions and the immutable role table.

Table layout (same shape as the optional JSON file):
    {role_name: {"rank": int, "permissions": [str, ...]}}

  - rank        : authority level; strictly higher rank = strictly more authority
  - "all"       : wildcard, satisfies every permission check
  - "verb_own_x": own-resource variant of "verb_x", honoured only for the owner
"""

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

WILDCARD = "all"

# Permission sets reused across roles.
_SELF_SERVICE = [
    "read_own_users",
    "manage_own_users",
]
_CUSTOMER = [
    "place_orders",
    "read_own_orders",
    "manage_own_orders",
]

DEFAULT_ROLES: dict[str, dict[str, Any]] = {
    "user": {
        "rank": 1,
        "permissions": [*_SELF_SERVICE, *_CUSTOMER],
    },
    "support": {
        "rank": 2,
        "permissions": [*_SELF_SERVICE, *_CUSTOMER, "read_users", "read_orders"],
    },
    "delivery": {
        "rank": 2,
        "permissions": [*_SELF_SERVICE, "read_orders", "update_order_status"],
    },
    "vendor": {
        "rank": 3,
        "permissions": [
            *_SELF_SERVICE,
            *_CUSTOMER,
            "create_products",
            "manage_own_products",
        ],
    },
    "marketing": {
        "rank": 3,
        "permissions": [*_SELF_SERVICE, *_CUSTOMER, "read_users", "read_orders"],
    },
    "sales": {
        "rank": 3,
        "permissions": [*_SELF_SERVICE, *_CUSTOMER, "read_users", "read_orders"],
    },
    "editor": {
        "rank": 3,
        "permissions": [
            *_SELF_SERVICE,
            *_CUSTOMER,
            "create_products",
            "manage_products",
        ],
    },
    "manager": {
        "rank": 4,
        "permissions": [
            *_SELF_SERVICE,
            *_CUSTOMER,
            "read_users",
            "create_products",
            "manage_products",
            "read_orders",
            "manage_orders",
        ],
    },
    "admin": {
        "rank": 5,
        "permissions": [
            *_SELF_SERVICE,
            *_CUSTOMER,
            "read_users",
            "manage_users",
            "assign_roles",
            "create_products",
            "manage_products",
            "read_orders",
            "manage_orders",
        ],
    },
    "superuser": {
        "rank": 6,
        "permissions": [
            *_SELF_SERVICE,
            *_CUSTOMER,
            "read_users",
            "manage_users",
            "assign_roles",
            "create_products",
            "manage_products",
            "read_orders",
            "manage_orders",
        ],
    },
    "root": {
        "rank": 7,
        "permissions": [WILDCARD],
    },
}


@dataclass(frozen=True)
class Role:
    name: str
    rank: int
    permissions: frozenset[str]

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.permissions


RoleTable = Mapping[str, Role]


def own_variant(permission: str) -> str:
    """
    Return the own-resource variant of a permission token.

        "manage_products" -> "manage_own_products"
        "read_orders"     -> "read_own_orders"
    """
    verb, sep, noun = permission.partition("_")
    if not sep:
        return f"own_{permission}"
    if noun.startswith("own_"):
        return permission
    return f"{verb}_own_{noun}"


def load_role_table(config: Mapping[str, Mapping[str, Any]]) -> RoleTable:
    """
    Build the read-only role table from a raw config mapping.

    Raises ValueError on malformed entries.
    """
    roles: dict[str, Role] = {}
    for name, entry in config.items():
        if not isinstance(name, str) or not name:
            raise ValueError(f"Invalid role name: {name!r}")
        rank = entry.get("rank") if isinstance(entry, Mapping) else None
        if not isinstance(rank, int) or isinstance(rank, bool):
            raise ValueError(f"Role '{name}' needs an integer rank")
        permissions = entry.get("permissions", [])
        if isinstance(permissions, str) or not all(
            isinstance(p, str) for p in permissions
        ):
            raise ValueError(f"Role '{name}' permissions must be a list of strings")
        roles[name] = Role(name=name, rank=rank, permissions=frozenset(permissions))
    return MappingProxyType(roles)


def load_role_table_from_file(path: str | Path) -> RoleTable:
    with open(path, encoding="utf-8") as fh:
        return load_role_table(json.load(fh))


def build_configured_role_table(roles_config_path: str | None = None) -> RoleTable:
    """Load the table named by settings, falling back to DEFAULT_ROLES."""
    if roles_config_path:
        return load_role_table_from_file(roles_config_path)
    return load_role_table(DEFAULT_ROLES)
