"""Top-up packages and counter top-ups."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.restaurant import Restaurant
from models.scan_log import ScanLog
from models.top_up import TopUp, TopUpPackage
from models.user import User
from services.errors import ConflictError, NotFoundError, ValidationError
from services.ledger import CurrencyType, credit_balance, read_amount
from services.notifications import notify_user

logger = logging.getLogger(__name__)


def serialize_package(package: TopUpPackage) -> Dict[str, Any]:
    return {
        "id": package.id,
        "restaurant_id": package.restaurant_id,
        "name": package.name,
        "amount": package.amount,
        "bonus": package.bonus,
        "currency": package.currency,
        "description": package.description,
        "is_active": bool(package.is_active),
        "is_public": bool(package.is_public),
        "created_at": package.created_at.isoformat() if package.created_at else None,
    }


async def _name_taken(db: AsyncSession, restaurant_id: str, name: str, exclude_id: Optional[str] = None) -> bool:
    query = select(TopUpPackage.id).where(
        TopUpPackage.restaurant_id == restaurant_id,
        TopUpPackage.name == name,
    )
    if exclude_id:
        query = query.where(TopUpPackage.id != exclude_id)
    result = await db.execute(query)
    return result.scalars().first() is not None


async def _get_own_package(db: AsyncSession, restaurant: Restaurant, package_id: str) -> TopUpPackage:
    result = await db.execute(
        select(TopUpPackage).where(
            TopUpPackage.id == package_id,
            TopUpPackage.restaurant_id == restaurant.id,
        )
    )
    package = result.scalar_one_or_none()
    if not package:
        raise NotFoundError("Package not found")
    return package


async def list_public_packages(db: AsyncSession, restaurant_id: str) -> List[Dict[str, Any]]:
    restaurant_result = await db.execute(select(Restaurant.id).where(Restaurant.id == restaurant_id))
    if not restaurant_result.scalar_one_or_none():
        raise NotFoundError("Restaurant not found")
    result = await db.execute(
        select(TopUpPackage)
        .where(
            TopUpPackage.restaurant_id == restaurant_id,
            TopUpPackage.is_active.is_(True),
            TopUpPackage.is_public.is_(True),
        )
        .order_by(TopUpPackage.created_at.desc())
    )
    return [serialize_package(item) for item in result.scalars().all()]


async def list_packages(db: AsyncSession, restaurant: Restaurant) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(TopUpPackage)
        .where(TopUpPackage.restaurant_id == restaurant.id)
        .order_by(TopUpPackage.created_at.desc())
    )
    return [serialize_package(item) for item in result.scalars().all()]


async def get_package(db: AsyncSession, restaurant: Restaurant, package_id: str) -> Dict[str, Any]:
    return serialize_package(await _get_own_package(db, restaurant, package_id))


async def create_package(
    db: AsyncSession,
    restaurant: Restaurant,
    *,
    name: str,
    amount: Decimal,
    bonus: Decimal = Decimal("0"),
    currency: str = "EUR",
    description: Optional[str] = None,
    is_active: bool = True,
    is_public: bool = True,
) -> Dict[str, Any]:
    count_result = await db.execute(
        select(func.count(TopUpPackage.id)).where(TopUpPackage.restaurant_id == restaurant.id)
    )
    limit = int(settings.MAX_TOPUP_PACKAGES)
    if int(count_result.scalar() or 0) >= limit:
        raise ValidationError(f"A restaurant can have at most {limit} top-up packages")

    clean_name = name.strip()
    if await _name_taken(db, restaurant.id, clean_name):
        raise ConflictError("A package with this name already exists")

    package = TopUpPackage(
        restaurant_id=restaurant.id,
        name=clean_name,
        amount=amount,
        bonus=bonus,
        currency=currency,
        description=description,
        is_active=is_active,
        is_public=is_public,
    )
    db.add(package)
    await db.commit()
    await db.refresh(package)
    logger.info("package_created restaurant=%s package=%s", restaurant.id, package.id)
    return serialize_package(package)


async def update_package(
    db: AsyncSession,
    restaurant: Restaurant,
    package_id: str,
    changes: Dict[str, Any],
) -> Dict[str, Any]:
    package = await _get_own_package(db, restaurant, package_id)

    if changes.get("name") is not None:
        clean_name = str(changes["name"]).strip()
        if clean_name != package.name and await _name_taken(db, restaurant.id, clean_name, exclude_id=package.id):
            raise ConflictError("A package with this name already exists")
        package.name = clean_name
    for field in ("amount", "bonus", "currency", "description", "is_active", "is_public"):
        if field in changes and changes[field] is not None:
            setattr(package, field, changes[field])

    await db.commit()
    await db.refresh(package)
    return serialize_package(package)


async def delete_package(db: AsyncSession, restaurant: Restaurant, package_id: str) -> None:
    package = await _get_own_package(db, restaurant, package_id)
    await db.delete(package)
    await db.commit()
    logger.info("package_deleted restaurant=%s package=%s", restaurant.id, package_id)


async def top_up_user(
    db: AsyncSession,
    restaurant: Restaurant,
    *,
    user_qr: str,
    package_id: str,
) -> Dict[str, Any]:
    """Credit a customer's cash balance with a package amount plus bonus."""
    user_result = await db.execute(select(User).where(User.qr_code == (user_qr or "").strip()))
    customer = user_result.scalar_one_or_none()
    if not customer:
        raise ValidationError("Invalid user QR code")

    package_result = await db.execute(
        select(TopUpPackage).where(
            TopUpPackage.id == package_id,
            TopUpPackage.restaurant_id == restaurant.id,
        )
    )
    package = package_result.scalar_one_or_none()
    if not package:
        raise ValidationError("Invalid package for this restaurant")
    if not package.is_active:
        raise ValidationError("Package is not active")

    amount = Decimal(str(package.amount or 0))
    bonus = Decimal(str(package.bonus or 0))
    total = amount + bonus

    row = await credit_balance(db, customer.id, restaurant.id, CurrencyType.BALANCE, total)
    top_up = TopUp(
        user_id=customer.id,
        restaurant_id=restaurant.id,
        package_id=package.id,
        amount=amount,
        bonus=bonus,
        total_balance_added=total,
        method="QR_SCAN",
    )
    db.add(top_up)
    await db.commit()
    new_balance = read_amount(row, CurrencyType.BALANCE)
    logger.info("topup user=%s restaurant=%s total=%s", customer.id, restaurant.id, total)

    await notify_user(
        db,
        user_id=customer.id,
        title="Balance topped up",
        body=f"{restaurant.name} added {total} {package.currency} to your balance",
        type="TOPUP",
    )
    return {
        "topup_id": top_up.id,
        "user_id": customer.id,
        "restaurant_id": restaurant.id,
        "package_id": package.id,
        "amount": amount,
        "bonus": bonus,
        "total_balance_added": total,
        "new_balance": new_balance,
    }


async def list_scans(db: AsyncSession, restaurant: Restaurant, *, limit: int = 50) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(ScanLog, User)
        .join(User, User.id == ScanLog.user_id)
        .where(ScanLog.restaurant_id == restaurant.id)
        .order_by(ScanLog.created_at.desc())
        .limit(max(1, min(int(limit), 200)))
    )
    return [
        {
            "id": scan.id,
            "user_id": scan.user_id,
            "user_name": user.full_name or user.email,
            "type": scan.type,
            "created_at": scan.created_at.isoformat() if scan.created_at else None,
        }
        for scan, user in result.all()
    ]
