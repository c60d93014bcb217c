"""
Shared fixtures.

- In-memory Motor-compatible database (mongomock-motor with transaction
  support from tests/transactions.py), fresh per test
- Policy objects built from the default role table
- Actors and seed helpers for products / users
"""

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from storefront.rbac import (
    DEFAULT_ROLES,
    AuthorizationGuard,
    HierarchyComparator,
    PermissionEvaluator,
    load_role_table,
)
from .helpers import make_actor
from .transactions import TransactionalDatabase


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return TransactionalDatabase(client[f"storefront_test_{ObjectId()}"])


@pytest.fixture
def role_table():
    return load_role_table(DEFAULT_ROLES)


@pytest.fixture
def evaluator(role_table):
    return PermissionEvaluator(role_table)


@pytest.fixture
def guard(evaluator):
    return AuthorizationGuard(evaluator)


@pytest.fixture
def hierarchy(evaluator):
    return HierarchyComparator(evaluator)


@pytest.fixture
def customer():
    return make_actor("user")


@pytest.fixture
def root():
    return make_actor("root")


@pytest.fixture
def manager():
    return make_actor("manager")


@pytest.fixture
def delivery():
    return make_actor("delivery")


@pytest.fixture
def vendor():
    return make_actor("vendor")


@pytest.fixture
def insert_product(db):
    async def _insert(price=10.0, stock=5, owner_id=None, name="Widget"):
        doc = {
            "name": name,
            "price": price,
            "stock": stock,
            "owner_id": owner_id or str(ObjectId()),
        }
        result = await db["products"].insert_one(doc)
        return str(result.inserted_id)

    return _insert


@pytest.fixture
def insert_user(db):
    async def _insert(role="user", user_id=None, name="Test User"):
        oid = ObjectId(user_id) if user_id else ObjectId()
        await db["users"].insert_one(
            {
                "_id": oid,
                "name": name,
                "email": f"{oid}@example.com",
                "password": "hashed-elsewhere",
                "role": role,
            }
        )
        return str(oid)

    return _insert
