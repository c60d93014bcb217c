from bson import ObjectId

from storefront.rbac import Actor


def make_actor(role: str, actor_id: str | None = None) -> Actor:
    return Actor(id=actor_id or str(ObjectId()), role=role)


async def stock_of(db, product_id: str) -> int:
    doc = await db["products"].find_one({"_id": ObjectId(product_id)})
    return doc["stock"]
