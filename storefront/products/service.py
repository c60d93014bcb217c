"""
Product service: catalog CRUD with ownership-aware authorization.

Collection: products
    { name, price, stock, category, description, owner_id,
      updated_by, created_at, updated_at }

Stock is only set on creation; afterwards it moves exclusively through the
order placement path.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from storefront import rbac
from storefront.rbac import Actor, AuthorizationGuard, OwnedResource
from storefront.utils import parse_object_id, serialize_mongo_doc, to_decimal
from storefront.utils.exceptions import InvalidInputError, NotFoundError

EDITABLE_FIELDS = {"name", "price", "category", "description"}


def _validate_price(value) -> float:
    try:
        price = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError("Product price must be a valid non-negative number")
    if not price.is_finite() or price < 0:
        raise InvalidInputError("Product price must be a valid non-negative number")
    if price != price.quantize(Decimal("0.01")):
        raise InvalidInputError("Product price cannot have more than 2 decimal places")
    return float(price)


class ProductService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        guard: Optional[AuthorizationGuard] = None,
    ):
        self.db = db
        self.guard = guard or rbac.guard
        self.products = db["products"]

    async def _load(self, product_id: str) -> dict:
        doc = await self.products.find_one(
            {"_id": parse_object_id(product_id, "product ID")}
        )
        if not doc:
            raise NotFoundError("Product not found")
        return doc

    async def create_product(self, actor: Optional[Actor], data: dict) -> dict:
        """Create a product owned by the acting user."""
        self.guard.enforce(actor, ["create_products", "manage_products"])

        name = (data.get("name") or "").strip()
        if not name:
            raise InvalidInputError("Product name is required")
        stock = data.get("stock", 0)
        if not isinstance(stock, int) or isinstance(stock, bool) or stock < 0:
            raise InvalidInputError("Product stock must be a valid non-negative integer")

        now = datetime.now(timezone.utc)
        product_doc = {
            "name": name,
            "price": _validate_price(data.get("price")),
            "stock": stock,
            "category": data.get("category"),
            "description": data.get("description"),
            "owner_id": actor.id,
            "updated_by": actor.id,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.products.insert_one(product_doc)
        product_doc["_id"] = result.inserted_id
        return serialize_mongo_doc(product_doc)

    async def get_product(self, product_id: str) -> dict:
        return serialize_mongo_doc(await self._load(product_id))

    async def list_products(
        self, limit: int = 20, offset: int = 0
    ) -> tuple[list[dict], int]:
        total = await self.products.count_documents({})
        cursor = self.products.find({}).sort("created_at", -1).skip(offset).limit(limit)
        docs = [serialize_mongo_doc(d) async for d in cursor]
        return docs, total

    async def update_product(
        self, actor: Optional[Actor], product_id: str, update_data: dict
    ) -> dict:
        """Owner (with manage_own_products) or manage_products may edit."""
        self.guard.authenticate(actor)
        product = await self._load(product_id)
        self.guard.enforce(
            actor, ["manage_products"], OwnedResource.from_doc(product)
        )

        clean = {
            k: v
            for k, v in update_data.items()
            if k in EDITABLE_FIELDS and v is not None
        }
        if not clean:
            raise InvalidInputError("At least one editable field is required")
        if "price" in clean:
            clean["price"] = _validate_price(clean["price"])

        clean["updated_by"] = actor.id
        clean["updated_at"] = datetime.now(timezone.utc)

        result = await self.products.find_one_and_update(
            {"_id": product["_id"]},
            {"$set": clean},
            return_document=True,
        )
        if not result:
            raise NotFoundError("Product not found")
        return serialize_mongo_doc(result)

    async def delete_product(self, actor: Optional[Actor], product_id: str) -> dict:
        self.guard.authenticate(actor)
        product = await self._load(product_id)
        self.guard.enforce(
            actor, ["manage_products"], OwnedResource.from_doc(product)
        )
        result = await self.products.delete_one({"_id": product["_id"]})
        if result.deleted_count == 0:
            raise NotFoundError("Product not found")
        return {"message": "Product deleted successfully"}
