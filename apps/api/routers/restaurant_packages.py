"""Restaurant owner router: top-up packages, counter top-ups and scan log."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.restaurant import Restaurant
from routers.auth_scope import (
    RESTAURANT_PACKAGES,
    RESTAURANT_SCANS,
    RESTAURANT_TOPUP,
    get_owned_restaurant,
    require_capability,
)
from routers.envelope import CamelModel, success_response
from services.topups import (
    create_package,
    delete_package,
    get_package,
    list_packages,
    list_scans,
    top_up_user,
    update_package,
)

router = APIRouter()


class PackageCreateRequest(CamelModel):
    name: str = Field(min_length=1, max_length=80)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    bonus: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="EUR", min_length=1, max_length=10)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_active: bool = True
    is_public: bool = True


class PackageUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    bonus: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None


class TopUpRequest(CamelModel):
    user_qr: str = Field(min_length=1, max_length=255)
    package_id: str = Field(min_length=1)


@router.get("/packages", dependencies=[Depends(require_capability(RESTAURANT_PACKAGES))])
async def get_packages(
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return success_response("Packages retrieved successfully", await list_packages(db, restaurant))


@router.post("/packages", status_code=201, dependencies=[Depends(require_capability(RESTAURANT_PACKAGES))])
async def add_package(
    request: PackageCreateRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await create_package(db, restaurant, **request.model_dump())
    return success_response("Package created successfully", data)


@router.get("/packages/{package_id}", dependencies=[Depends(require_capability(RESTAURANT_PACKAGES))])
async def get_single_package(
    package_id: str,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return success_response("Package retrieved successfully", await get_package(db, restaurant, package_id))


@router.put("/packages/{package_id}", dependencies=[Depends(require_capability(RESTAURANT_PACKAGES))])
async def edit_package(
    package_id: str,
    request: PackageUpdateRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await update_package(db, restaurant, package_id, request.model_dump(exclude_unset=True))
    return success_response("Package updated successfully", data)


@router.delete("/packages/{package_id}", dependencies=[Depends(require_capability(RESTAURANT_PACKAGES))])
async def remove_package(
    package_id: str,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    await delete_package(db, restaurant, package_id)
    return success_response("Package deleted successfully")


@router.post("/balance/topup", dependencies=[Depends(require_capability(RESTAURANT_TOPUP))])
async def topup_customer(
    request: TopUpRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await top_up_user(db, restaurant, user_qr=request.user_qr, package_id=request.package_id)
    return success_response("Balance topped up successfully", data)


@router.get("/qr-scans", dependencies=[Depends(require_capability(RESTAURANT_SCANS))])
async def recent_scans(
    limit: int = Query(default=50, ge=1, le=200),
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return success_response("Scans retrieved successfully", await list_scans(db, restaurant, limit=limit))
