"""
Order Routes.

Endpoints:
    POST   /                  Place an order (stock reserved atomically)
    GET    /                  List orders (all, or own orders only)
    GET    /{id}              Get a single order
    PUT    /{id}              Edit the shipping address
    PUT    /{id}/status       Change order status
    DELETE /{id}              Delete an order
"""

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from storefront.auth import get_current_actor
from storefront.config import get_database
from storefront.rbac import Actor
from storefront.utils import success_response
from .schemas import PlaceOrderRequest, UpdateOrderRequest, UpdateOrderStatusRequest
from .service import OrderService

orders_router = APIRouter()


@orders_router.post("/")
async def place_order(
    body: PlaceOrderRequest,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    """
    Place an order.

    Duplicate products in `items` are merged. Returns 409 when stock is
    insufficient at commit time; nothing is reserved in that case.
    """
    svc = OrderService(db)
    order = await svc.place_order(
        actor,
        [item.model_dump() for item in body.items],
        body.shipping_address,
    )
    return success_response(data=order, message="Order created successfully", code=201)


@orders_router.get("/")
async def list_orders(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = OrderService(db)
    orders, total = await svc.list_orders(actor, limit=limit, offset=offset)
    return success_response(
        data={"orders": orders, "total": total, "limit": limit, "offset": offset}
    )


@orders_router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = OrderService(db)
    return success_response(data=await svc.get_order(actor, order_id))


@orders_router.put("/{order_id}/status")
async def set_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    """Delivery staff can only mark orders as delivered."""
    svc = OrderService(db)
    order = await svc.set_status(actor, order_id, body.status)
    return success_response(
        data=order, message=f"Order status updated to {body.status} successfully"
    )


@orders_router.put("/{order_id}")
async def update_order(
    order_id: str,
    body: UpdateOrderRequest,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = OrderService(db)
    order = await svc.update_order(actor, order_id, body.model_dump())
    return success_response(data=order, message="Order updated successfully")


@orders_router.delete("/{order_id}")
async def delete_order(
    order_id: str,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = OrderService(db)
    result = await svc.delete_order(actor, order_id)
    return success_response(data=result, message="Order deleted")
