"""Owner-facing restaurant profile and the admin restaurant directory."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.group import GroupMembership, RestaurantGroup
from models.restaurant import Restaurant
from models.subscription import Subscription
from models.user import User
from services.errors import ValidationError
from services.identity import serialize_restaurant

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "address", "latitude", "longitude")


async def _group_summary(db: AsyncSession, restaurant: Restaurant) -> Optional[Dict[str, Any]]:
    """Owned group first, otherwise the group the restaurant is a member of."""
    owned = await db.execute(select(RestaurantGroup).where(RestaurantGroup.owner_id == restaurant.id))
    group = owned.scalar_one_or_none()
    role = "OWNER"
    if group is None:
        member = await db.execute(
            select(RestaurantGroup)
            .join(GroupMembership, GroupMembership.group_id == RestaurantGroup.id)
            .where(GroupMembership.restaurant_id == restaurant.id)
        )
        group = member.scalar_one_or_none()
        role = "MEMBER"
    if group is None:
        return None
    return {"id": group.id, "name": group.name, "description": group.description, "role": role}


def _serialize_info(restaurant: Restaurant) -> Dict[str, Any]:
    return {
        **serialize_restaurant(restaurant),
        "created_at": restaurant.created_at.isoformat() if restaurant.created_at else None,
    }


async def get_restaurant_info(db: AsyncSession, restaurant: Restaurant) -> Dict[str, Any]:
    return {**_serialize_info(restaurant), "group": await _group_summary(db, restaurant)}


async def update_restaurant_info(db: AsyncSession, restaurant: Restaurant, updates: Dict[str, Any]) -> Dict[str, Any]:
    for key in EDITABLE_FIELDS:
        value = updates.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValidationError(f"{key} cannot be empty")
        setattr(restaurant, key, value)

    await db.commit()
    changed = sorted(key for key in EDITABLE_FIELDS if updates.get(key) is not None)
    logger.info("restaurant_updated restaurant=%s fields=%s", restaurant.id, changed)
    return _serialize_info(restaurant)


async def regenerate_qr_codes(db: AsyncSession, restaurant: Restaurant) -> Dict[str, Any]:
    """Issue fresh meal and drink codes; the previous ones stop resolving."""
    restaurant.qr_code_meal = str(uuid.uuid4())
    restaurant.qr_code_drink = str(uuid.uuid4())
    await db.commit()
    logger.info("restaurant_qr_regenerated restaurant=%s", restaurant.id)
    return _serialize_info(restaurant)


async def list_restaurants(
    db: AsyncSession,
    *,
    search: Optional[str] = None,
    subscription_active: Optional[bool] = None,
    plan_id: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    filters = []
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        filters.append(or_(func.lower(Restaurant.name).like(pattern), func.lower(User.email).like(pattern)))
    if subscription_active is not None:
        filters.append(Restaurant.is_subscription_active.is_(subscription_active))
    if plan_id and plan_id != "all":
        filters.append(Restaurant.id.in_(select(Subscription.restaurant_id).where(Subscription.plan_id == plan_id)))

    page_number = max(int(page), 1)
    size = max(1, min(int(page_size), 100))
    counted = select(func.count(Restaurant.id)).join(User, User.id == Restaurant.user_id).where(*filters)
    total_items = int((await db.execute(counted)).scalar_one() or 0)
    result = await db.execute(
        select(Restaurant, User)
        .join(User, User.id == Restaurant.user_id)
        .where(*filters)
        .order_by(Restaurant.created_at.desc(), Restaurant.id.asc())
        .offset((page_number - 1) * size)
        .limit(size)
    )
    items = [
        {
            **_serialize_info(restaurant),
            "owner": {"id": owner.id, "full_name": owner.full_name, "email": owner.email},
        }
        for restaurant, owner in result.all()
    ]
    return {
        "items": items,
        "pagination": {
            "total_items": total_items,
            "total_pages": (total_items + size - 1) // size,
            "current_page": page_number,
            "page_size": size,
        },
    }
