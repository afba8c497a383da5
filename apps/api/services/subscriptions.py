"""Plans, restaurant subscriptions and the periodic subscription sweep."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.restaurant import Restaurant
from models.subscription import Plan, Subscription, SubscriptionStatus
from models.user import User
from services.errors import APIError, NotFoundError, ValidationError
from services.notifications import notify_user

logger = logging.getLogger(__name__)

REMINDER_FIELDS = {
    30: "reminder_sent_30_days_at",
    3: "reminder_sent_3_days_at",
}

ACTIVE = SubscriptionStatus.ACTIVE.value
EXPIRED = SubscriptionStatus.EXPIRED.value
CANCELLED = SubscriptionStatus.CANCELLED.value
PENDING = SubscriptionStatus.PENDING.value


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite hands back naive timestamps; they are stored as UTC.
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    normalized = _as_utc(value)
    return normalized.isoformat() if normalized else None


def serialize_plan(plan: Plan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "title": plan.title,
        "description": plan.description,
        "price": plan.price,
        "currency": plan.currency,
        "duration": plan.duration,
        "is_active": bool(plan.is_active),
    }


def serialize_subscription(subscription: Subscription, plan: Optional[Plan] = None) -> Dict[str, Any]:
    payload = {
        "id": subscription.id,
        "restaurant_id": subscription.restaurant_id,
        "plan_id": subscription.plan_id,
        "status": subscription.status,
        "payment_status": subscription.payment_status,
        "start_date": _iso(subscription.start_date),
        "end_date": _iso(subscription.end_date),
    }
    if plan is not None:
        payload["plan"] = serialize_plan(plan)
    return payload


async def _restaurant_has_active_subscription(db: AsyncSession, restaurant_id: str, now: datetime) -> bool:
    result = await db.execute(
        select(func.count(Subscription.id)).where(
            Subscription.restaurant_id == restaurant_id,
            Subscription.status == ACTIVE,
            Subscription.start_date <= now,
            Subscription.end_date >= now,
        )
    )
    return int(result.scalar() or 0) > 0


async def send_expiry_reminders(db: AsyncSession, days_offset: int, now: datetime) -> int:
    """Notify owners whose ACTIVE subscription ends on the UTC day ``now + days_offset``."""
    field_name = REMINDER_FIELDS.get(int(days_offset))
    if not field_name:
        logger.warning("No reminder stamp for %s-day offset; skipped", days_offset)
        return 0
    stamp = getattr(Subscription, field_name)

    day_start = datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=int(days_offset))
    day_end = day_start + timedelta(days=1)
    result = await db.execute(
        select(Subscription, Restaurant)
        .join(Restaurant, Restaurant.id == Subscription.restaurant_id)
        .where(
            Subscription.status == ACTIVE,
            Subscription.end_date >= day_start,
            Subscription.end_date < day_end,
            stamp.is_(None),
        )
    )
    pending = result.all()

    sent = 0
    for subscription, restaurant in pending:
        notification = await notify_user(
            db,
            user_id=restaurant.user_id,
            title=f"Subscription renewal reminder ({days_offset} days)",
            body=(
                f"Your subscription for {restaurant.name} will end in {days_offset} days. "
                "Please renew to continue using all features."
            ),
            type="SUBSCRIPTION_REMINDER",
        )
        # Stamp only delivered reminders so failed ones are retried next sweep.
        if notification is None:
            continue
        setattr(subscription, field_name, now)
        await db.commit()
        sent += 1
    return sent


async def check_and_update_subscriptions(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
    """Send reminders, expire lapsed subscriptions and recompute restaurant flags."""
    current = _as_utc(now) or datetime.now(timezone.utc)

    reminders = 0
    try:
        for days_offset in settings.SUBSCRIPTION_REMINDER_DAYS:
            reminders += await send_expiry_reminders(db, days_offset, current)
    except Exception:
        logger.exception("Subscription reminder pass failed")
        await db.rollback()

    expired_result = await db.execute(
        select(Subscription).where(Subscription.status == ACTIVE, Subscription.end_date < current)
    )
    expired = expired_result.scalars().all()
    for subscription in expired:
        subscription.status = EXPIRED

    active_result = await db.execute(
        select(Subscription.restaurant_id)
        .where(
            Subscription.status == ACTIVE,
            Subscription.start_date <= current,
            Subscription.end_date >= current,
        )
        .distinct()
    )
    active_ids = set(active_result.scalars().all())

    restaurants = (await db.execute(select(Restaurant))).scalars().all()
    for restaurant in restaurants:
        is_active = restaurant.id in active_ids
        restaurant.is_active = is_active
        restaurant.is_subscription_active = is_active

    await db.commit()
    logger.info(
        "subscription_sweep reminders=%s expired=%s restaurants=%s",
        reminders,
        len(expired),
        len(restaurants),
    )
    return {"reminders": reminders, "expired": len(expired), "restaurants": len(restaurants)}


async def run_subscription_sweep_service() -> Dict[str, int]:
    async with async_session_maker() as db:
        return await check_and_update_subscriptions(db)


async def list_plans(db: AsyncSession, *, include_inactive: bool = False) -> List[Dict[str, Any]]:
    query = select(Plan).order_by(Plan.price.asc(), Plan.title.asc())
    if not include_inactive:
        query = query.where(Plan.is_active.is_(True))
    result = await db.execute(query)
    return [serialize_plan(item) for item in result.scalars().all()]


async def _get_plan(db: AsyncSession, plan_id: str) -> Plan:
    result = await db.execute(select(Plan).where(Plan.id == plan_id))
    plan = result.scalar_one_or_none()
    if not plan:
        raise NotFoundError("Plan not found")
    return plan


async def get_plan(db: AsyncSession, plan_id: str, *, include_inactive: bool = False) -> Dict[str, Any]:
    plan = await _get_plan(db, plan_id)
    if not plan.is_active and not include_inactive:
        raise NotFoundError("Plan not found")
    return serialize_plan(plan)


async def create_plan(
    db: AsyncSession,
    *,
    title: str,
    price: Decimal,
    duration: int,
    currency: str = "EUR",
    description: Optional[str] = None,
    is_active: bool = True,
) -> Dict[str, Any]:
    plan = Plan(
        title=title.strip(),
        description=description,
        price=price,
        currency=currency,
        duration=int(duration),
        is_active=is_active,
    )
    db.add(plan)
    await db.commit()
    logger.info("plan_created plan=%s title=%s", plan.id, plan.title)
    return serialize_plan(plan)


async def update_plan(db: AsyncSession, plan_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    plan = await _get_plan(db, plan_id)
    for field in ("title", "description", "price", "currency", "duration", "is_active"):
        if field in changes and changes[field] is not None:
            setattr(plan, field, changes[field])
    await db.commit()
    await db.refresh(plan)
    return serialize_plan(plan)


async def list_all_subscriptions(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    plan_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    filters = []
    if status and status != "all":
        filters.append(Subscription.status == status.upper())
    if plan_id and plan_id != "all":
        filters.append(Subscription.plan_id == plan_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(Restaurant.name).like(pattern),
                func.lower(func.coalesce(User.full_name, "")).like(pattern),
            )
        )

    base = (
        select(Subscription, Plan, Restaurant)
        .join(Plan, Plan.id == Subscription.plan_id)
        .join(Restaurant, Restaurant.id == Subscription.restaurant_id)
        .join(User, User.id == Restaurant.user_id)
        .where(*filters)
    )
    page_number = max(int(page), 1)
    size = max(1, min(int(page_size), 100))
    result = await db.execute(
        base.order_by(Subscription.created_at.desc()).offset((page_number - 1) * size).limit(size)
    )
    items = [
        {
            **serialize_subscription(subscription, plan),
            "restaurant": {"id": restaurant.id, "name": restaurant.name},
        }
        for subscription, plan, restaurant in result.all()
    ]

    counted = (
        select(Subscription.status, func.count(Subscription.id), func.coalesce(func.sum(Plan.price), 0))
        .join(Plan, Plan.id == Subscription.plan_id)
        .join(Restaurant, Restaurant.id == Subscription.restaurant_id)
        .join(User, User.id == Restaurant.user_id)
        .where(*filters)
        .group_by(Subscription.status)
    )
    counts: Dict[str, int] = {}
    total_value = Decimal("0")
    for row_status, count, value in (await db.execute(counted)).all():
        counts[row_status] = int(count or 0)
        total_value += Decimal(str(value or 0))
    total_items = sum(counts.values())

    return {
        "items": items,
        "pagination": {
            "total_items": total_items,
            "total_pages": (total_items + size - 1) // size,
            "current_page": page_number,
            "page_size": size,
        },
        "statistics": {
            "active": counts.get(ACTIVE, 0),
            "cancelled": counts.get(CANCELLED, 0),
            "expired": counts.get(EXPIRED, 0),
            "pending": counts.get(PENDING, 0),
            "total_value": total_value,
        },
    }


async def activate_subscription(db: AsyncSession, *, restaurant_id: str, plan_id: str) -> Dict[str, Any]:
    """Extend the restaurant's current subscription on ``plan_id`` or start a new one."""
    restaurant_result = await db.execute(select(Restaurant).where(Restaurant.id == restaurant_id))
    restaurant = restaurant_result.scalar_one_or_none()
    if not restaurant:
        raise NotFoundError("Restaurant not found")
    plan = await _get_plan(db, plan_id)

    now = datetime.now(timezone.utc)
    existing_result = await db.execute(
        select(Subscription)
        .where(
            Subscription.restaurant_id == restaurant.id,
            Subscription.plan_id == plan.id,
            Subscription.end_date >= now,
        )
        .order_by(Subscription.end_date.desc())
        .with_for_update()
    )
    subscription = existing_result.scalars().first()

    if subscription:
        subscription.end_date = _as_utc(subscription.end_date) + timedelta(days=int(plan.duration))
        subscription.status = ACTIVE
        subscription.payment_status = "paid"
        subscription.reminder_sent_30_days_at = None
        subscription.reminder_sent_3_days_at = None
        extended = True
    else:
        subscription = Subscription(
            restaurant_id=restaurant.id,
            plan_id=plan.id,
            start_date=now,
            end_date=now + timedelta(days=int(plan.duration)),
            status=ACTIVE,
            payment_status="paid",
        )
        db.add(subscription)
        extended = False

    restaurant.is_active = True
    restaurant.is_subscription_active = True
    await db.commit()
    await db.refresh(subscription)
    logger.info(
        "subscription_%s restaurant=%s plan=%s subscription=%s",
        "extended" if extended else "activated",
        restaurant.id,
        plan.id,
        subscription.id,
    )

    await notify_user(
        db,
        user_id=restaurant.user_id,
        title="Subscription activated",
        body=f"Your {plan.title} subscription is active until {_as_utc(subscription.end_date).date().isoformat()}",
        type="SUBSCRIPTION",
    )
    return {**serialize_subscription(subscription, plan), "extended": extended}


async def _cancel(db: AsyncSession, subscription: Subscription, restaurant: Restaurant, reason: Optional[str]) -> Dict[str, Any]:
    if subscription.status in (EXPIRED, CANCELLED):
        raise ValidationError("Subscription cannot be cancelled")

    subscription.status = CANCELLED
    await db.flush()
    now = datetime.now(timezone.utc)
    is_active = await _restaurant_has_active_subscription(db, restaurant.id, now)
    restaurant.is_active = is_active
    restaurant.is_subscription_active = is_active
    await db.commit()
    await db.refresh(subscription)
    logger.info("subscription_cancelled subscription=%s restaurant=%s", subscription.id, restaurant.id)

    body = "Your subscription has been cancelled"
    if reason:
        body = f"{body}: {reason}"
    await notify_user(
        db,
        user_id=restaurant.user_id,
        title="Subscription Cancelled",
        body=body,
        type="SUBSCRIPTION_CANCELLED",
    )
    return serialize_subscription(subscription)


async def cancel_subscription(db: AsyncSession, subscription_id: str, *, reason: Optional[str] = None) -> Dict[str, Any]:
    result = await db.execute(
        select(Subscription, Restaurant)
        .join(Restaurant, Restaurant.id == Subscription.restaurant_id)
        .where(Subscription.id == subscription_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Subscription not found")
    subscription, restaurant = row
    return await _cancel(db, subscription, restaurant, reason)


async def list_restaurant_subscriptions(db: AsyncSession, restaurant: Restaurant) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(Subscription, Plan)
        .join(Plan, Plan.id == Subscription.plan_id)
        .where(Subscription.restaurant_id == restaurant.id)
        .order_by(Subscription.created_at.desc())
    )
    return [serialize_subscription(subscription, plan) for subscription, plan in result.all()]


async def cancel_own_subscription(db: AsyncSession, restaurant: Restaurant, subscription_id: str) -> Dict[str, Any]:
    result = await db.execute(
        select(Subscription).where(
            Subscription.id == subscription_id,
            Subscription.restaurant_id == restaurant.id,
        )
    )
    subscription = result.scalar_one_or_none()
    if not subscription:
        raise NotFoundError("Subscription not found")
    return await _cancel(db, subscription, restaurant, None)


async def start_free_trial(db: AsyncSession, restaurant: Restaurant) -> Subscription:
    """Attach the free-trial plan to a freshly created restaurant. Caller commits."""
    result = await db.execute(
        select(Plan).where(Plan.title == settings.FREE_TRIAL_PLAN_TITLE, Plan.is_active.is_(True))
    )
    plan = result.scalars().first()
    if not plan:
        raise APIError(500, "Free trial plan is not configured", "FREE_TRIAL_PLAN_MISSING")

    now = datetime.now(timezone.utc)
    subscription = Subscription(
        restaurant_id=restaurant.id,
        plan_id=plan.id,
        start_date=now,
        end_date=now + timedelta(days=int(plan.duration)),
        status=ACTIVE,
        payment_status="free_trial",
    )
    db.add(subscription)
    restaurant.is_active = True
    restaurant.is_subscription_active = True
    return subscription
