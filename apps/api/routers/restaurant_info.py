"""Restaurant owner router: own restaurant profile and QR code rotation."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.restaurant import Restaurant
from routers.auth_scope import get_owned_restaurant
from routers.envelope import CamelModel, success_response
from services.restaurants import get_restaurant_info, regenerate_qr_codes, update_restaurant_info

router = APIRouter()


class RestaurantUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    address: Optional[str] = Field(default=None, min_length=2, max_length=255)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


@router.get("/info")
async def get_info(
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return success_response("Restaurant fetched successfully", await get_restaurant_info(db, restaurant))


@router.put("/info")
async def update_info(
    request: RestaurantUpdateRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await update_restaurant_info(db, restaurant, request.model_dump(exclude_unset=True))
    return success_response("Restaurant updated successfully", data)


@router.put("/qr/regenerate")
async def regenerate_codes(
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return success_response("QR codes regenerated successfully", await regenerate_qr_codes(db, restaurant))
