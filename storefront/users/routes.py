from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from storefront.auth import get_current_actor
from storefront.config import get_database
from storefront.rbac import Actor
from storefront.utils import success_response
from .schemas import UpdateUserRequest
from .service import UserService

users_router = APIRouter()


@users_router.get("/")
async def list_users(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = UserService(db)
    users, total = await svc.list_users(actor, limit=limit, offset=offset)
    return success_response(
        data={"users": users, "total": total, "limit": limit, "offset": offset}
    )


@users_router.get("/{user_id}")
async def get_user(
    user_id: str,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = UserService(db)
    return success_response(data=await svc.get_user(actor, user_id))


@users_router.put("/{user_id}")
async def update_user(
    user_id: str,
    body: UpdateUserRequest,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = UserService(db)
    user = await svc.update_user(actor, user_id, body.model_dump(exclude_unset=True))
    return success_response(data=user, message="User profile updated successfully")


@users_router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    actor: Optional[Actor] = Depends(get_current_actor),
    db: AsyncIOMotorDatabase = Depends(get_database),
):
    svc = UserService(db)
    result = await svc.delete_user(actor, user_id)
    return success_response(data=result, message="User deleted")
