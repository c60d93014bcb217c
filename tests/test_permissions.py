"""Permission Evaluator and role table."""

import json
from itertools import product

import pytest

from storefront.rbac import DEFAULT_ROLES, WILDCARD, load_role_table, own_variant
from storefront.rbac.roles import load_role_table_from_file

ALL_TOKENS = sorted(
    {p for entry in DEFAULT_ROLES.values() for p in entry["permissions"]}
    | {"unheard_of", "assign_roles"}
)


def test_has_permission_matches_set_membership_or_wildcard(evaluator, role_table):
    for role, permission in product(role_table, ALL_TOKENS):
        perms = role_table[role].permissions
        expected = permission in perms or WILDCARD in perms
        assert evaluator.has_permission(role, permission) is expected


def test_wildcard_satisfies_anything(evaluator):
    assert evaluator.has_permission("root", "anything_at_all")
    assert evaluator.has_any_permission("root", ["x", "y"])


def test_unknown_role_fails_closed(evaluator):
    assert evaluator.rank_of("pirate") == 0
    assert evaluator.rank_of(None) == 0
    assert not evaluator.has_permission("pirate", "place_orders")
    assert not evaluator.has_any_permission(None, ["place_orders"])
    assert not evaluator.can("pirate", "orders", "create")


def test_has_any_permission(evaluator):
    assert evaluator.has_any_permission("delivery", ["manage_orders", "update_order_status"])
    assert not evaluator.has_any_permission("user", ["manage_orders", "read_orders"])
    assert not evaluator.has_any_permission("admin", [])


def test_rank_ordering_is_transitive(evaluator, role_table):
    roles = list(role_table)
    for a, b, c in product(roles, repeat=3):
        if evaluator.rank_of(a) > evaluator.rank_of(b) > evaluator.rank_of(c):
            assert evaluator.rank_of(a) > evaluator.rank_of(c)


def test_resource_action_queries_use_the_same_table(evaluator):
    assert evaluator.can("vendor", "products", "create")
    assert evaluator.can("vendor", "products", "update")  # via own variant
    assert not evaluator.can("user", "products", "create")
    assert evaluator.can("user", "orders", "create")
    assert evaluator.can("delivery", "orders", "update")
    assert not evaluator.can("manager", "users", "delete")
    assert evaluator.can("admin", "users", "delete")
    assert not evaluator.can("admin", "invoices", "read")


def test_product_reads_are_public(evaluator):
    assert evaluator.is_public("products", "read")
    assert evaluator.can(None, "products", "read")
    assert not evaluator.is_public("orders", "read")


@pytest.mark.parametrize(
    "permission, expected",
    [
        ("manage_products", "manage_own_products"),
        ("read_orders", "read_own_orders"),
        ("manage_own_orders", "manage_own_orders"),
        ("admin", "own_admin"),
    ],
)
def test_own_variant(permission, expected):
    assert own_variant(permission) == expected


def test_role_table_is_read_only(role_table):
    with pytest.raises(TypeError):
        role_table["intruder"] = role_table["root"]
    with pytest.raises(AttributeError):
        role_table["user"].rank = 99


def test_role_table_permissions_are_frozen(role_table):
    assert isinstance(role_table["admin"].permissions, frozenset)


@pytest.mark.parametrize(
    "config",
    [
        {"user": {"permissions": ["place_orders"]}},
        {"user": {"rank": "1", "permissions": []}},
        {"user": {"rank": True, "permissions": []}},
        {"user": {"rank": 1, "permissions": "place_orders"}},
        {"user": {"rank": 1, "permissions": [1, 2]}},
    ],
)
def test_malformed_role_config_is_rejected(config):
    with pytest.raises(ValueError):
        load_role_table(config)


def test_load_role_table_from_file(tmp_path):
    path = tmp_path / "roles.json"
    path.write_text(
        json.dumps(
            {
                "clerk": {"rank": 2, "permissions": ["place_orders"]},
                "boss": {"rank": 9, "permissions": ["all"]},
            }
        )
    )
    table = load_role_table_from_file(path)
    assert table["clerk"].rank == 2
    assert table["boss"].is_wildcard
    assert "place_orders" in table["clerk"].permissions
