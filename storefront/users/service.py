"""User service: account reads and rank-checked administrative mutations."""

from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from storefront import rbac
from storefront.rbac import (
    Actor,
    AuthorizationGuard,
    Decision,
    HierarchyComparator,
    OwnedResource,
)
from storefront.utils import Logger, parse_object_id, serialize_mongo_doc
from storefront.utils.exceptions import InvalidInputError, NotFoundError

logger = Logger("users")

UPDATABLE_FIELDS = {"name", "email", "phone", "address", "role"}
USER_READ_PERMISSIONS = ["read_users", "manage_users"]


def _safe(doc: dict) -> dict:
    safe = serialize_mongo_doc(doc)
    safe.pop("password", None)
    return safe


class UserService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        guard: Optional[AuthorizationGuard] = None,
        hierarchy: Optional[HierarchyComparator] = None,
    ):
        self.db = db
        self.guard = guard or rbac.guard
        self.hierarchy = hierarchy or HierarchyComparator(self.guard.evaluator)
        self.users = db["users"]

    def _apply(self, decision: Decision, actor: Actor, target_id: str) -> None:
        if not decision.allowed:
            logger.warning(f"Denied actor={actor.id} target={target_id}: {decision.reason}")
            decision.raise_for_denial()

    async def _load(self, user_id: str) -> dict:
        user = await self.users.find_one({"_id": parse_object_id(user_id, "user ID")})
        if not user:
            raise NotFoundError("User not found")
        return user

    async def get_user(self, actor: Optional[Actor], user_id: str) -> dict:
        """Own profile, or any profile with read_users/manage_users."""
        parse_object_id(user_id, "user ID")
        self.guard.enforce(
            actor, USER_READ_PERMISSIONS, OwnedResource(id=user_id, owner_id=user_id)
        )
        return _safe(await self._load(user_id))

    async def list_users(
        self, actor: Optional[Actor], limit: int = 20, offset: int = 0
    ) -> tuple[list[dict], int]:
        self.guard.enforce(actor, USER_READ_PERMISSIONS)
        total = await self.users.count_documents({})
        cursor = self.users.find({}).sort("created_at", -1).skip(offset).limit(limit)
        return [_safe(u) async for u in cursor], total

    async def update_user(
        self, actor: Optional[Actor], user_id: str, patch: dict
    ) -> dict:
        """
        Update a profile under the rank hierarchy.

        - others: needs a strictly higher rank (or the wildcard)
        - role field: never on yourself; needs assign_roles and the new role
          must rank strictly below your own (wildcard holders excepted)
        """
        self.guard.authenticate(actor)
        target_oid = parse_object_id(user_id, "user ID")
        target_id = str(target_oid)

        if not patch:
            raise InvalidInputError("At least one field is required for update")
        unsupported = set(patch) - UPDATABLE_FIELDS
        if unsupported:
            raise InvalidInputError("Request contains unsupported user update fields")

        is_self = actor.id == target_id
        target = await self._load(target_id)
        self._apply(
            self.hierarchy.check_update(actor, target_id, target.get("role")),
            actor,
            target_id,
        )

        clean = {k: v for k, v in patch.items() if v is not None}
        if "role" in clean:
            new_role = clean["role"]
            if not is_self and not self.hierarchy.evaluator.is_known_role(new_role):
                raise InvalidInputError("Invalid target role")
            self._apply(
                self.hierarchy.check_role_assignment(actor, target_id, new_role),
                actor,
                target_id,
            )

        if not clean:
            raise InvalidInputError("At least one field is required for update")

        clean["updated_by"] = actor.id
        clean["updated_at"] = datetime.now(timezone.utc)

        result = await self.users.find_one_and_update(
            {"_id": target_oid},
            {"$set": clean},
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            raise NotFoundError("User not found")
        if "role" in clean:
            logger.info(f"User {target_id} role → {clean['role']} by {actor.id}")
        return _safe(result)

    async def delete_user(self, actor: Optional[Actor], user_id: str) -> dict:
        """Delete an account ranked strictly below the actor (or any, with wildcard)."""
        self.guard.enforce(actor, ["manage_users"])
        target = await self._load(user_id)
        target_id = str(target["_id"])
        target_role = target.get("role")
        self._apply(self.hierarchy.check_delete(actor, target_role), actor, target_id)

        result = await self.users.delete_one({"_id": target["_id"]})
        if result.deleted_count == 0:
            raise NotFoundError("User not found")
        logger.info(f"User {target_id} ({target_role}) deleted by {actor.id}")
        return {"message": f"User ({target_role}) deleted successfully"}
