"""Admin directory router: paginated user and restaurant listings."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import ADMIN_READ, AuthContext, require_capability
from routers.envelope import success_response
from services.identity import list_users
from services.restaurants import list_restaurants

router = APIRouter()


@router.get("/users")
async def admin_list_users(
    role: Optional[str] = Query(default=None, max_length=40),
    email: Optional[str] = Query(default=None, max_length=254),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    auth: AuthContext = Depends(require_capability(ADMIN_READ)),
    db: AsyncSession = Depends(get_db),
):
    data = await list_users(
        db,
        viewer_role=auth.role,
        role=role,
        email=email,
        page=page,
        page_size=page_size,
    )
    return success_response("Users retrieved successfully", data)


@router.get("/restaurants", dependencies=[Depends(require_capability(ADMIN_READ))])
async def admin_list_restaurants(
    search: Optional[str] = Query(default=None, max_length=120),
    subscription_active: Optional[bool] = Query(default=None, alias="subscriptionActive"),
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
):
    data = await list_restaurants(
        db,
        search=search,
        subscription_active=subscription_active,
        plan_id=plan_id,
        page=page,
        page_size=page_size,
    )
    return success_response("Restaurants retrieved successfully", data)
