"""Customer balance router: earn by scanning, pay and gift."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import (
    BALANCE_EARN,
    BALANCE_GIFT,
    BALANCE_READ,
    BALANCE_SPEND,
    AuthContext,
    require_capability,
)
from routers.envelope import CamelModel, success_response
from routers.rate_limit import rate_limit
from services.ledger import CurrencyType, get_ledger_history, gift, list_balances_by_target, pay, scan_qr_code
from services.topups import list_public_packages

router = APIRouter()


class ScanRequest(CamelModel):
    qr_code: str = Field(min_length=1, max_length=255)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class PayRequest(CamelModel):
    target_id: str = Field(min_length=1)
    currency_type: CurrencyType
    amount: Decimal = Field(gt=0)


class GiftRequest(PayRequest):
    qr_code: str = Field(min_length=1, max_length=255)


@router.get("/with-restaurants")
async def balances_with_restaurants(
    auth: AuthContext = Depends(require_capability(BALANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    data = await list_balances_by_target(auth.user_id, db)
    return success_response("Balances retrieved successfully", data)


@router.get("/packages/{restaurant_id}")
async def restaurant_packages(
    restaurant_id: str,
    auth: AuthContext = Depends(require_capability(BALANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    data = await list_public_packages(db, restaurant_id)
    return success_response("Packages retrieved successfully", data)


@router.post("/scan-qr")
async def scan_qr(
    request: ScanRequest,
    _rate_limit: None = Depends(rate_limit("balance_scan", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(require_capability(BALANCE_EARN)),
    db: AsyncSession = Depends(get_db),
):
    data = await scan_qr_code(
        db,
        user_id=auth.user_id,
        qr_code=request.qr_code,
        latitude=request.latitude,
        longitude=request.longitude,
    )
    return success_response("Stars added successfully", data)


@router.post("/pay")
async def pay_with_balance(
    request: PayRequest,
    auth: AuthContext = Depends(require_capability(BALANCE_SPEND)),
    db: AsyncSession = Depends(get_db),
):
    data = await pay(
        db,
        user_id=auth.user_id,
        target_id=request.target_id,
        currency=request.currency_type,
        amount=request.amount,
    )
    message = "Group payment successful" if data["is_group"] else "Payment successful"
    return success_response(message, data)


@router.post("/gift")
async def gift_balance(
    request: GiftRequest,
    auth: AuthContext = Depends(require_capability(BALANCE_GIFT)),
    db: AsyncSession = Depends(get_db),
):
    data = await gift(
        db,
        sender_id=auth.user_id,
        sender_name=auth.full_name or auth.email,
        recipient_qr=request.qr_code,
        target_id=request.target_id,
        currency=request.currency_type,
        amount=request.amount,
    )
    message = "Group gift sent successfully" if data["is_group"] else "Gift sent successfully"
    return success_response(message, data)


@router.get("/history")
async def balance_history(
    limit: int = Query(default=20, ge=1, le=100),
    auth: AuthContext = Depends(require_capability(BALANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    data = await get_ledger_history(auth.user_id, db, limit=limit)
    return success_response("History retrieved successfully", data)
