"""
Order service: transactional placement, status transitions, owner-scoped reads.

Collections used:
    - orders   : order records with snapshotted line items
    - products : stock reserved on placement

Placement runs in one multi-document transaction. Inside it, each product's
stock is taken with a conditional update

    find_one_and_update({_id, stock: {$gte: qty}}, {$inc: {stock: -qty}})

and the order is inserted. Other readers see the stock either before the
transaction or after its commit, never a reservation that is later dropped.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from storefront import rbac
from storefront.config import settings
from storefront.rbac import Actor, AuthorizationGuard, OwnedResource
from storefront.utils import Logger, parse_object_id, serialize_mongo_doc, to_decimal
from storefront.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidInputError,
    NotFoundError,
)
from .schemas import OrderStatusEnum

logger = Logger("orders")

VALID_STATUSES = frozenset(s.value for s in OrderStatusEnum)
TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})

# Roles that may only move orders into a fixed set of states.
RESTRICTED_STATUS_TARGETS: dict[str, frozenset[str]] = {
    "delivery": frozenset({"delivered"}),
}

ORDER_READ_PERMISSIONS = ["read_orders", "manage_orders"]


class StockRaceLost(Exception):
    """A conditional decrement matched nothing inside the transaction."""


def merge_line_items(items: Iterable[Mapping]) -> dict[str, int]:
    """
    Sum requested quantities per product, keeping first-appearance order.

        [{"product_id": "a", "quantity": 2}, {"product_id": "a", "quantity": 3}]
        → {"a": 5}
    """
    merged: dict[str, int] = {}
    for item in items or []:
        product_id = item.get("product_id") if isinstance(item, Mapping) else None
        quantity = item.get("quantity") if isinstance(item, Mapping) else None
        if not product_id or not isinstance(product_id, str):
            raise InvalidInputError("Each order item must include a product id")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise InvalidInputError("Each order item must include a valid quantity")
        merged[product_id] = merged.get(product_id, 0) + quantity
    if not merged:
        raise InvalidInputError("Order must contain at least one product")
    return merged


def _is_transient(exc: PyMongoError) -> bool:
    return exc.has_error_label("TransientTransactionError")


class OrderService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        guard: Optional[AuthorizationGuard] = None,
        max_attempts: Optional[int] = None,
        lock_terminal_status: Optional[bool] = None,
        retry_backoff: Optional[float] = None,
    ):
        self.db = db
        self.guard = guard or rbac.guard
        self.evaluator = self.guard.evaluator
        self.max_attempts = max(1, max_attempts or settings.order_placement_max_attempts)
        self.retry_backoff = (
            settings.order_placement_retry_backoff
            if retry_backoff is None
            else retry_backoff
        )
        self.lock_terminal_status = (
            settings.lock_terminal_order_status
            if lock_terminal_status is None
            else lock_terminal_status
        )
        self.orders = db["orders"]
        self.products = db["products"]

    # ── Stock reservation ────────────────────────────────────────

    async def _load_products(self, object_ids: dict[str, ObjectId]) -> dict[str, dict]:
        """Committed snapshot of every referenced product; NotFound if any is missing."""
        cursor = self.products.find({"_id": {"$in": list(object_ids.values())}})
        found = {str(d["_id"]): d async for d in cursor}
        for product_id in object_ids:
            if product_id not in found:
                raise NotFoundError(f"Product {product_id} not found")
        return found

    async def _reserve_stock(
        self, object_ids: dict[str, ObjectId], requested: dict[str, int], session
    ) -> Optional[dict[str, dict]]:
        """
        Conditionally decrement every product within `session`.

        Returns {product_id: product document after decrement}, or None as soon
        as one product has too little stock.
        """
        reserved: dict[str, dict] = {}
        for product_id, quantity in requested.items():
            doc = await self.products.find_one_and_update(
                {"_id": object_ids[product_id], "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if doc is None:
                return None
            reserved[product_id] = doc
        return reserved

    @staticmethod
    def _build_order(
        actor: Actor,
        requested: dict[str, int],
        reserved: dict[str, dict],
        shipping_address: str,
    ) -> dict:
        line_items = []
        total = Decimal("0")
        for product_id, quantity in requested.items():
            unit_price = to_decimal(reserved[product_id].get("price", 0))
            total += unit_price * quantity
            line_items.append(
                {
                    "product_id": product_id,
                    "quantity": quantity,
                    "unit_price": float(unit_price),
                }
            )

        now = datetime.now(timezone.utc)
        return {
            "user_id": actor.id,
            "line_items": line_items,
            "total_amount": float(total),
            "shipping_address": shipping_address,
            "status": OrderStatusEnum.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }

    async def _place_once(
        self,
        actor: Actor,
        object_ids: dict[str, ObjectId],
        requested: dict[str, int],
        shipping_address: str,
    ) -> dict:
        """One transactional attempt. Any exception aborts every write in it."""
        async with await self.db.client.start_session() as session:
            async with session.start_transaction():
                reserved = await self._reserve_stock(object_ids, requested, session)
                if reserved is None:
                    raise StockRaceLost()
                order_doc = self._build_order(actor, requested, reserved, shipping_address)
                result = await self.orders.insert_one(order_doc, session=session)
        order_doc["_id"] = result.inserted_id
        return order_doc

    # ── Place Order ──────────────────────────────────────────────

    async def place_order(
        self,
        actor: Optional[Actor],
        items: Iterable[Mapping],
        shipping_address: str,
    ) -> dict:
        """
        All-or-nothing order placement.

        1. Merge duplicate products and validate input (nothing touched yet)
        2. Snapshot products; any missing → NotFound, too little stock → Conflict
        3. In one transaction: decrement stock per product, insert the order
           with snapshotted unit prices and a Decimal total

        An attempt that loses a race (no-match or write conflict) is aborted
        and retried, at most `max_attempts` times, then reports Conflict.
        """
        self.guard.enforce(actor, ["place_orders"])

        requested: dict[str, int] = {}
        for product_id, quantity in merge_line_items(items).items():
            key = str(parse_object_id(product_id, "product ID"))
            requested[key] = requested.get(key, 0) + quantity

        address = shipping_address.strip() if isinstance(shipping_address, str) else ""
        if not address:
            raise InvalidInputError("Shipping address is required")

        object_ids = {pid: ObjectId(pid) for pid in requested}

        for attempt in range(1, self.max_attempts + 1):
            snapshot = await self._load_products(object_ids)
            short = [
                pid for pid, qty in requested.items()
                if snapshot[pid].get("stock", 0) < qty
            ]
            if short:
                logger.info(f"Insufficient stock for {short}")
                raise ConflictError("Insufficient stock")

            try:
                order_doc = await self._place_once(actor, object_ids, requested, address)
            except StockRaceLost:
                logger.warning(f"Lost stock race (attempt {attempt}/{self.max_attempts})")
            except PyMongoError as exc:
                if not _is_transient(exc):
                    logger.exception("Order placement failed")
                    raise InternalError() from exc
                logger.warning(
                    f"Transient transaction error (attempt {attempt}/{self.max_attempts}): {exc}"
                )
            else:
                logger.info(
                    f"Order {order_doc['_id']} placed by {actor.id}: "
                    f"{len(requested)} product(s), total {order_doc['total_amount']}"
                )
                return serialize_mongo_doc(order_doc)

            if attempt < self.max_attempts and self.retry_backoff:
                await asyncio.sleep(self.retry_backoff * attempt)

        raise ConflictError("Insufficient stock")

    # ── Get / List ───────────────────────────────────────────────

    async def _load(self, order_id: str) -> dict:
        order = await self.orders.find_one({"_id": parse_object_id(order_id, "order ID")})
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def get_order(self, actor: Optional[Actor], order_id: str) -> dict:
        """Owners see their own orders; read_orders/manage_orders see all."""
        self.guard.authenticate(actor)
        order = await self._load(order_id)
        self.guard.enforce(
            actor, ORDER_READ_PERMISSIONS, OwnedResource.from_doc(order, "user_id")
        )
        return serialize_mongo_doc(order)

    async def list_orders(
        self, actor: Optional[Actor], limit: int = 20, offset: int = 0
    ) -> tuple[list[dict], int]:
        self.guard.authenticate(actor)
        filters: dict = {}
        if not self.guard.evaluate(actor, ORDER_READ_PERMISSIONS).allowed:
            filters["user_id"] = actor.id

        total = await self.orders.count_documents(filters)
        cursor = self.orders.find(filters).sort("created_at", -1).skip(offset).limit(limit)
        docs = [serialize_mongo_doc(d) async for d in cursor]
        return docs, total

    # ── Status ───────────────────────────────────────────────────

    async def set_status(
        self, actor: Optional[Actor], order_id: str, new_status: str
    ) -> dict:
        """
        Move an order to any valid status.

        Restricted roles (delivery) may only set their allowed targets. With
        `lock_terminal_status`, delivered/cancelled orders stay put unless the
        actor holds the wildcard.
        """
        self.guard.enforce(actor, ["manage_orders", "update_order_status"])

        if new_status not in VALID_STATUSES:
            raise InvalidInputError("Invalid status value")

        allowed_targets = RESTRICTED_STATUS_TARGETS.get(actor.role)
        if allowed_targets is not None and new_status not in allowed_targets:
            logger.warning(f"Role '{actor.role}' may not set status '{new_status}'")
            raise ForbiddenError()

        query: dict = {"_id": parse_object_id(order_id, "order ID")}
        locked = self.lock_terminal_status and not self.evaluator.is_wildcard(actor.role)
        if locked:
            query["status"] = {"$nin": list(TERMINAL_STATUSES - {new_status})}

        result = await self.orders.find_one_and_update(
            query,
            {
                "$set": {
                    "status": new_status,
                    "updated_by": actor.id,
                    "updated_at": datetime.now(timezone.utc),
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            if locked and await self.orders.find_one({"_id": query["_id"]}):
                logger.warning(f"Order {order_id} is in a terminal status")
                raise ForbiddenError()
            raise NotFoundError("Order not found")
        logger.info(f"Order {order_id} status → {new_status} by {actor.id}")
        return serialize_mongo_doc(result)

    # ── Update / Delete ──────────────────────────────────────────

    async def update_order(
        self, actor: Optional[Actor], order_id: str, update_data: dict
    ) -> dict:
        """Only the shipping address can change; line items and totals are fixed."""
        self.guard.enforce(actor, ["manage_orders"])

        address = update_data.get("shipping_address")
        if not isinstance(address, str) or not address.strip():
            raise InvalidInputError("Shipping address is required")

        result = await self.orders.find_one_and_update(
            {"_id": parse_object_id(order_id, "order ID")},
            {
                "$set": {
                    "shipping_address": address.strip(),
                    "updated_by": actor.id,
                    "updated_at": datetime.now(timezone.utc),
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            raise NotFoundError("Order not found")
        return serialize_mongo_doc(result)

    async def delete_order(self, actor: Optional[Actor], order_id: str) -> dict:
        self.guard.authenticate(actor)
        order = await self._load(order_id)
        self.guard.enforce(
            actor, ["manage_orders"], OwnedResource.from_doc(order, "user_id")
        )
        result = await self.orders.delete_one({"_id": order["_id"]})
        if result.deleted_count == 0:
            raise NotFoundError("Order not found")
        return {"message": "Order deleted successfully"}
