from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from storefront.auth import get_current_actor
from storefront.config import get_database
from storefront.rbac import Actor
from storefront.utils import success_response
from .schemas import CreateProductRequest, UpdateProductRequest
from .service import ProductService

products_router = APIRouter()


@products_router.post("/")
async def create_product(
    body: CreateProductRequest,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    """Create a product. The caller becomes its owner."""
    svc = ProductService(db)
    product = await svc.create_product(actor, body.model_dump())
    return success_response(data=product, message="Product created", code=201)


@products_router.get("/")
async def list_products(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = ProductService(db)
    products, total = await svc.list_products(limit=limit, offset=offset)
    return success_response(
        data={"products": products, "total": total, "limit": limit, "offset": offset}
    )


@products_router.get("/{product_id}")
async def get_product(
    product_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = ProductService(db)
    return success_response(data=await svc.get_product(product_id))


@products_router.put("/{product_id}")
async def update_product(
    product_id: str,
    body: UpdateProductRequest,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    """Owners may edit their own products; manage_products may edit any."""
    svc = ProductService(db)
    product = await svc.update_product(
        actor, product_id, body.model_dump(exclude_unset=True)
    )
    return success_response(data=product, message="Product updated")


@products_router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = ProductService(db)
    result = await svc.delete_product(actor, product_id)
    return success_response(data=result, message="Product deleted")
