"""Plans and subscriptions routers (public, admin and restaurant owner)."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.restaurant import Restaurant
from routers.auth_scope import (
    ADMIN_PLANS,
    ADMIN_READ,
    ADMIN_SUBSCRIPTIONS,
    RESTAURANT_SUBSCRIPTIONS,
    get_owned_restaurant,
    require_capability,
)
from routers.envelope import CamelModel, success_response
from services.subscriptions import (
    activate_subscription,
    cancel_own_subscription,
    cancel_subscription,
    create_plan,
    get_plan,
    list_all_subscriptions,
    list_plans,
    list_restaurant_subscriptions,
    update_plan,
)

plans_router = APIRouter()
admin_plans_router = APIRouter()
admin_subscriptions_router = APIRouter()
restaurant_router = APIRouter(dependencies=[Depends(require_capability(RESTAURANT_SUBSCRIPTIONS))])


class PlanCreateRequest(CamelModel):
    title: str = Field(min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=10000)
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="EUR", min_length=1, max_length=50)
    duration: int = Field(gt=0, description="Plan length in days")
    is_active: bool = True


class PlanUpdateRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=10000)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=50)
    duration: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


class ActivateRequest(CamelModel):
    restaurant_id: str = Field(min_length=1)
    plan_id: str = Field(min_length=1)


class CancelRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=500)


@plans_router.get("")
async def public_plans(db: AsyncSession = Depends(get_db)):
    return success_response("Plans retrieved successfully", await list_plans(db))


@plans_router.get("/{plan_id}")
async def public_plan(plan_id: str, db: AsyncSession = Depends(get_db)):
    return success_response("Plan retrieved successfully", await get_plan(db, plan_id))


@admin_plans_router.get("", dependencies=[Depends(require_capability(ADMIN_READ))])
async def admin_list_plans(db: AsyncSession = Depends(get_db)):
    return success_response("Plans retrieved successfully", await list_plans(db, include_inactive=True))


@admin_plans_router.post("", status_code=201, dependencies=[Depends(require_capability(ADMIN_PLANS))])
async def admin_create_plan(request: PlanCreateRequest, db: AsyncSession = Depends(get_db)):
    return success_response("Plan created successfully", await create_plan(db, **request.model_dump()))


@admin_plans_router.put("/{plan_id}", dependencies=[Depends(require_capability(ADMIN_PLANS))])
async def admin_update_plan(plan_id: str, request: PlanUpdateRequest, db: AsyncSession = Depends(get_db)):
    data = await update_plan(db, plan_id, request.model_dump(exclude_unset=True))
    return success_response("Plan updated successfully", data)


@admin_subscriptions_router.get("", dependencies=[Depends(require_capability(ADMIN_READ))])
async def admin_list_subscriptions(
    status: Optional[str] = Query(default=None),
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    search: Optional[str] = Query(default=None, max_length=120),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
):
    data = await list_all_subscriptions(
        db,
        status=status,
        plan_id=plan_id,
        search=search,
        page=page,
        page_size=page_size,
    )
    return success_response("Subscriptions retrieved successfully", data)


@admin_subscriptions_router.post("/activate", dependencies=[Depends(require_capability(ADMIN_SUBSCRIPTIONS))])
async def admin_activate_subscription(request: ActivateRequest, db: AsyncSession = Depends(get_db)):
    data = await activate_subscription(db, restaurant_id=request.restaurant_id, plan_id=request.plan_id)
    message = "Subscription extended successfully" if data["extended"] else "Subscription activated successfully"
    return success_response(message, data)


@admin_subscriptions_router.put(
    "/cancel/{subscription_id}",
    dependencies=[Depends(require_capability(ADMIN_SUBSCRIPTIONS))],
)
async def admin_cancel_subscription(
    subscription_id: str,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db),
):
    data = await cancel_subscription(db, subscription_id, reason=request.reason)
    return success_response("Subscription cancelled successfully", data)


@restaurant_router.get("")
async def owner_subscriptions(
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await list_restaurant_subscriptions(db, restaurant)
    return success_response("Subscriptions retrieved successfully", data)


@restaurant_router.put("/{subscription_id}/cancel")
async def owner_cancel_subscription(
    subscription_id: str,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await cancel_own_subscription(db, restaurant, subscription_id)
    return success_response("Subscription cancelled successfully", data)
