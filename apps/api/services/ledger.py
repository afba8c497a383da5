"""Balance ledger: star accrual, payments and gifts.

Every mutation reads the affected balance rows with ``FOR UPDATE``, writes the
new values together with the audit rows, and commits once. Notifications are
sent only after that commit.
"""

from __future__ import annotations

import enum
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.balance import UserRestaurantBalance
from models.gift import Gift
from models.group import GroupMembership, RestaurantGroup
from models.purchase import Purchase
from models.restaurant import Restaurant
from models.scan_log import ScanLog, StarsTransaction
from models.top_up import TopUp
from models.user import User
from services.errors import (
    InsufficientFundsError,
    InvalidCodeError,
    InvalidLocationError,
    NotFoundError,
    ValidationError,
)
from services.geo import haversine_distance, is_within_radius
from services.groups import group_pool_restaurant_ids
from services.notifications import notify_user

logger = logging.getLogger(__name__)

Amount = Union[int, Decimal]

CENT = Decimal("0.01")


class CurrencyType(str, enum.Enum):
    BALANCE = "balance"
    STARS_MEAL = "stars_meal"
    STARS_DRINK = "stars_drink"

    @property
    def is_stars(self) -> bool:
        return self is not CurrencyType.BALANCE


INSUFFICIENT_MESSAGES = {
    CurrencyType.BALANCE: "Insufficient balance",
    CurrencyType.STARS_MEAL: "Insufficient meal stars",
    CurrencyType.STARS_DRINK: "Insufficient drink stars",
}


def normalize_amount(currency: CurrencyType, amount: Any) -> Amount:
    """Validate a requested amount; stars are whole numbers, cash has cents."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Amount must be a number") from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than 0")
    if currency.is_stars:
        if value != value.to_integral_value():
            raise ValidationError("Stars amount must be a whole number")
        return int(value)
    if value != value.quantize(CENT):
        raise ValidationError("Amount supports at most 2 decimal places")
    return value.quantize(CENT)


def read_amount(row: UserRestaurantBalance, currency: CurrencyType) -> Amount:
    value = getattr(row, currency.value)
    if currency.is_stars:
        return int(value or 0)
    return Decimal(str(value or 0)).quantize(CENT)


def write_amount(row: UserRestaurantBalance, currency: CurrencyType, value: Amount) -> None:
    setattr(row, currency.value, value)


def plan_drain(available: Sequence[Tuple[str, Amount]], amount: Amount) -> List[Tuple[str, Amount]]:
    """Greedy split of ``amount`` over ``(key, available)`` pairs, in order.

    Each key gives ``min(remaining, available)``; keys that give nothing are
    omitted. The caller checks the total beforehand.
    """
    remaining = amount
    plan: List[Tuple[str, Amount]] = []
    for key, value in available:
        if remaining <= 0:
            break
        take = min(remaining, value)
        if take <= 0:
            continue
        plan.append((key, take))
        remaining -= take
    if remaining > 0:
        raise InsufficientFundsError("Insufficient group balance")
    return plan


def serialize_balance(row: UserRestaurantBalance) -> Dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "restaurant_id": row.restaurant_id,
        "balance": read_amount(row, CurrencyType.BALANCE),
        "stars_meal": read_amount(row, CurrencyType.STARS_MEAL),
        "stars_drink": read_amount(row, CurrencyType.STARS_DRINK),
    }


async def get_balance_row(
    db: AsyncSession,
    user_id: str,
    restaurant_id: str,
    *,
    lock: bool = True,
) -> Optional[UserRestaurantBalance]:
    query = select(UserRestaurantBalance).where(
        UserRestaurantBalance.user_id == user_id,
        UserRestaurantBalance.restaurant_id == restaurant_id,
    )
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_or_create_balance_row(db: AsyncSession, user_id: str, restaurant_id: str) -> UserRestaurantBalance:
    """Locked balance row for the pair, inserting an empty one when missing.

    The insert skips on a unique-pair conflict, so two first-time credits for the
    same pair both end up locking and updating the single surviving row.
    """
    row = await get_balance_row(db, user_id, restaurant_id)
    if row:
        return row
    insert = sqlite_insert if db.bind.dialect.name == "sqlite" else pg_insert
    await db.execute(
        insert(UserRestaurantBalance)
        .values(
            id=str(uuid.uuid4()),
            user_id=user_id,
            restaurant_id=restaurant_id,
            balance=Decimal("0.00"),
            stars_meal=0,
            stars_drink=0,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "restaurant_id"])
    )
    row = await get_balance_row(db, user_id, restaurant_id)
    if row is None:
        raise RuntimeError(f"Balance row for user={user_id} restaurant={restaurant_id} vanished after insert")
    return row


async def credit_balance(
    db: AsyncSession,
    user_id: str,
    restaurant_id: str,
    currency: CurrencyType,
    amount: Amount,
) -> UserRestaurantBalance:
    row = await get_or_create_balance_row(db, user_id, restaurant_id)
    write_amount(row, currency, read_amount(row, currency) + amount)
    return row


async def resolve_qr_code(db: AsyncSession, qr_code: str) -> Tuple[Restaurant, str]:
    """Map a scanned code to its restaurant and earn type (meal or drink)."""
    code = (qr_code or "").strip()
    if not code:
        raise InvalidCodeError("QR code is required")
    result = await db.execute(
        select(Restaurant).where(or_(Restaurant.qr_code_meal == code, Restaurant.qr_code_drink == code))
    )
    restaurant = result.scalars().first()
    if not restaurant:
        raise InvalidCodeError()
    if restaurant.qr_code_meal == code:
        return restaurant, "meal"
    return restaurant, "drink"


async def _resolve_target(
    db: AsyncSession,
    target_id: str,
    not_found_message: str,
) -> Tuple[Optional[Restaurant], Optional[RestaurantGroup]]:
    restaurant_result = await db.execute(select(Restaurant).where(Restaurant.id == target_id))
    restaurant = restaurant_result.scalar_one_or_none()
    if restaurant:
        return restaurant, None
    group_result = await db.execute(select(RestaurantGroup).where(RestaurantGroup.id == target_id))
    group = group_result.scalar_one_or_none()
    if not group:
        raise NotFoundError(not_found_message)
    return None, group


async def _locked_group_rows(db: AsyncSession, user_id: str, group: RestaurantGroup) -> List[UserRestaurantBalance]:
    pool_ids = await group_pool_restaurant_ids(db, group)
    if not pool_ids:
        return []
    result = await db.execute(
        select(UserRestaurantBalance)
        .where(
            UserRestaurantBalance.user_id == user_id,
            UserRestaurantBalance.restaurant_id.in_(pool_ids),
        )
        .order_by(UserRestaurantBalance.restaurant_id.asc())
        .with_for_update()
    )
    return list(result.scalars().all())


async def _owner_user_id(db: AsyncSession, restaurant_id: str) -> Optional[str]:
    result = await db.execute(select(Restaurant.user_id).where(Restaurant.id == restaurant_id))
    return result.scalar_one_or_none()


async def scan_qr_code(
    db: AsyncSession,
    *,
    user_id: str,
    qr_code: str,
    latitude: float,
    longitude: float,
) -> Dict[str, Any]:
    restaurant, scan_type = await resolve_qr_code(db, qr_code)

    if not is_within_radius(
        latitude, longitude, restaurant.latitude, restaurant.longitude, float(settings.SCAN_RADIUS_METERS)
    ):
        logger.info(
            "scan_rejected user=%s restaurant=%s distance_m=%.1f",
            user_id,
            restaurant.id,
            haversine_distance(latitude, longitude, restaurant.latitude, restaurant.longitude),
        )
        raise InvalidLocationError()

    award = max(int(settings.SCAN_STAR_AWARD), 0)
    currency = CurrencyType.STARS_MEAL if scan_type == "meal" else CurrencyType.STARS_DRINK
    row = await credit_balance(db, user_id, restaurant.id, currency, award)

    db.add(
        ScanLog(
            user_id=user_id,
            restaurant_id=restaurant.id,
            type=scan_type,
            qr_code=qr_code.strip(),
            latitude=latitude,
            longitude=longitude,
        )
    )
    db.add(
        StarsTransaction(
            user_id=user_id,
            restaurant_id=restaurant.id,
            type=scan_type,
            stars_meal=award if scan_type == "meal" else 0,
            stars_drink=award if scan_type == "drink" else 0,
        )
    )
    await db.commit()
    snapshot = serialize_balance(row)
    logger.info("scan user=%s restaurant=%s type=%s stars=%s", user_id, restaurant.id, scan_type, award)

    await notify_user(
        db,
        user_id=user_id,
        title="You received stars!",
        body=f"You received {award} {scan_type} stars from {restaurant.name}",
        type="STARS",
    )
    return snapshot


async def pay(
    db: AsyncSession,
    *,
    user_id: str,
    target_id: str,
    currency: CurrencyType,
    amount: Any,
) -> Dict[str, Any]:
    """Debit one currency at a restaurant, or pooled across a group."""
    value = normalize_amount(currency, amount)
    restaurant, group = await _resolve_target(db, target_id, "Group not found")

    if restaurant is not None:
        row = await get_balance_row(db, user_id, restaurant.id)
        if not row:
            raise ValidationError("No balance found for this restaurant")
        available = read_amount(row, currency)
        if available < value:
            raise InsufficientFundsError(INSUFFICIENT_MESSAGES[currency])

        write_amount(row, currency, available - value)
        db.add(
            Purchase(
                user_id=user_id,
                restaurant_id=restaurant.id,
                payment_type=currency.value,
                amount=value,
            )
        )
        await db.commit()
        remaining = read_amount(row, currency)
        logger.info("payment user=%s restaurant=%s %s=%s", user_id, restaurant.id, currency.value, value)

        await notify_user(
            db,
            user_id=user_id,
            title="Payment Successful",
            body=f"You spent {value} {currency.value} at {restaurant.name}",
            type="PAYMENT",
        )
        await notify_user(
            db,
            user_id=restaurant.user_id,
            title="New Payment Received",
            body=f"A user paid {value} {currency.value} at your restaurant",
            type="PAYMENT",
        )
        return {
            "target_id": restaurant.id,
            "is_group": False,
            "currency_type": currency.value,
            "amount": value,
            "remaining": remaining,
        }

    rows = await _locked_group_rows(db, user_id, group)
    if not rows:
        raise ValidationError("No balances found for this group")
    total = sum((read_amount(row, currency) for row in rows), 0)
    if total < value:
        raise InsufficientFundsError("Insufficient group balance")

    by_restaurant = {row.restaurant_id: row for row in rows}
    plan = plan_drain([(row.restaurant_id, read_amount(row, currency)) for row in rows], value)
    for restaurant_id, take in plan:
        row = by_restaurant[restaurant_id]
        write_amount(row, currency, read_amount(row, currency) - take)

    db.add(
        Purchase(
            user_id=user_id,
            group_id=group.id,
            payment_type=currency.value,
            amount=value,
        )
    )
    await db.commit()
    logger.info(
        "group_payment user=%s group=%s %s=%s rows=%s",
        user_id,
        group.id,
        currency.value,
        value,
        len(plan),
    )

    await notify_user(
        db,
        user_id=user_id,
        title="Payment Successful",
        body=f"You spent {value} {currency.value} across group {group.name}",
        type="PAYMENT",
    )
    await notify_user(
        db,
        user_id=await _owner_user_id(db, group.owner_id),
        title="New Group Payment",
        body=f"A user paid {value} {currency.value} across your group {group.name}",
        type="PAYMENT",
    )
    return {
        "target_id": group.id,
        "is_group": True,
        "currency_type": currency.value,
        "amount": value,
        "remaining": total - value,
        "deductions": [{"restaurant_id": rid, "amount": take} for rid, take in plan],
    }


async def gift(
    db: AsyncSession,
    *,
    sender_id: str,
    sender_name: Optional[str],
    recipient_qr: str,
    target_id: str,
    currency: CurrencyType,
    amount: Any,
) -> Dict[str, Any]:
    """Transfer one currency to another user, restaurant by restaurant."""
    value = normalize_amount(currency, amount)

    recipient_result = await db.execute(select(User).where(User.qr_code == (recipient_qr or "").strip()))
    recipient = recipient_result.scalar_one_or_none()
    if not recipient:
        raise NotFoundError("Recipient not found")
    if recipient.id == sender_id:
        raise ValidationError("Cannot gift to yourself")

    restaurant, group = await _resolve_target(db, target_id, "Target not found")
    sender_label = sender_name or "a friend"
    recipient_label = recipient.full_name or recipient.email

    if restaurant is not None:
        sender_row = await get_balance_row(db, sender_id, restaurant.id)
        if not sender_row:
            raise ValidationError("No balance found for this restaurant")
        available = read_amount(sender_row, currency)
        if available < value:
            raise InsufficientFundsError(INSUFFICIENT_MESSAGES[currency])

        write_amount(sender_row, currency, available - value)
        await credit_balance(db, recipient.id, restaurant.id, currency, value)
        db.add(
            Gift(
                from_user_id=sender_id,
                to_user_id=recipient.id,
                restaurant_id=restaurant.id,
                type=currency.value,
                amount=value,
                status="completed",
            )
        )
        await db.commit()
        logger.info(
            "gift from=%s to=%s restaurant=%s %s=%s",
            sender_id,
            recipient.id,
            restaurant.id,
            currency.value,
            value,
        )

        await notify_user(
            db,
            user_id=sender_id,
            title="Gift Sent",
            body=f"You gifted {value} {currency.value} to {recipient_label}",
            type="GIFT",
        )
        await notify_user(
            db,
            user_id=recipient.id,
            title="Gift Received",
            body=f"You received {value} {currency.value} from {sender_label}",
            type="GIFT",
        )
        return {
            "target_id": restaurant.id,
            "is_group": False,
            "recipient_id": recipient.id,
            "currency_type": currency.value,
            "amount": value,
            "transfers": [{"restaurant_id": restaurant.id, "amount": value}],
        }

    rows = await _locked_group_rows(db, sender_id, group)
    if not rows:
        raise ValidationError("No balances found for this group")
    total = sum((read_amount(row, currency) for row in rows), 0)
    if total < value:
        raise InsufficientFundsError("Insufficient group balance")

    by_restaurant = {row.restaurant_id: row for row in rows}
    plan = plan_drain([(row.restaurant_id, read_amount(row, currency)) for row in rows], value)
    for restaurant_id, take in plan:
        sender_row = by_restaurant[restaurant_id]
        write_amount(sender_row, currency, read_amount(sender_row, currency) - take)
        # Currency never crosses restaurant boundaries.
        await credit_balance(db, recipient.id, restaurant_id, currency, take)

    db.add(
        Gift(
            from_user_id=sender_id,
            to_user_id=recipient.id,
            group_id=group.id,
            type=currency.value,
            amount=value,
            status="completed",
        )
    )
    await db.commit()
    logger.info(
        "group_gift from=%s to=%s group=%s %s=%s rows=%s",
        sender_id,
        recipient.id,
        group.id,
        currency.value,
        value,
        len(plan),
    )

    await notify_user(
        db,
        user_id=sender_id,
        title="Gift Sent",
        body=f"You gifted {value} {currency.value} to {recipient_label} from group {group.name}",
        type="GIFT",
    )
    await notify_user(
        db,
        user_id=recipient.id,
        title="Gift Received",
        body=f"You received {value} {currency.value} from {sender_label} (group {group.name})",
        type="GIFT",
    )
    return {
        "target_id": group.id,
        "is_group": True,
        "recipient_id": recipient.id,
        "currency_type": currency.value,
        "amount": value,
        "transfers": [{"restaurant_id": rid, "amount": take} for rid, take in plan],
    }


async def list_balances_by_target(user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    """Non-zero balances, summed per group or per standalone restaurant."""
    result = await db.execute(
        select(UserRestaurantBalance, Restaurant)
        .join(Restaurant, Restaurant.id == UserRestaurantBalance.restaurant_id)
        .where(
            UserRestaurantBalance.user_id == user_id,
            or_(
                UserRestaurantBalance.balance > 0,
                UserRestaurantBalance.stars_meal > 0,
                UserRestaurantBalance.stars_drink > 0,
            ),
        )
        .order_by(Restaurant.name.asc(), Restaurant.id.asc())
    )
    pairs = result.all()
    if not pairs:
        return []

    restaurant_ids = [restaurant.id for _, restaurant in pairs]
    group_by_restaurant: Dict[str, RestaurantGroup] = {}
    owned_result = await db.execute(select(RestaurantGroup).where(RestaurantGroup.owner_id.in_(restaurant_ids)))
    for group in owned_result.scalars().all():
        group_by_restaurant[group.owner_id] = group
    member_result = await db.execute(
        select(GroupMembership.restaurant_id, RestaurantGroup)
        .join(RestaurantGroup, RestaurantGroup.id == GroupMembership.group_id)
        .where(GroupMembership.restaurant_id.in_(restaurant_ids))
    )
    for restaurant_id, group in member_result.all():
        group_by_restaurant.setdefault(restaurant_id, group)

    grouped: Dict[str, Dict[str, Any]] = {}
    for row, restaurant in pairs:
        group = group_by_restaurant.get(restaurant.id)
        target_id = group.id if group else restaurant.id
        entry = grouped.get(target_id)
        if entry is None:
            entry = {
                "target_id": target_id,
                "name": group.name if group else restaurant.name,
                "is_group": group is not None,
                "balance": Decimal("0.00"),
                "stars_meal": 0,
                "stars_drink": 0,
            }
            grouped[target_id] = entry
        entry["balance"] += read_amount(row, CurrencyType.BALANCE)
        entry["stars_meal"] += read_amount(row, CurrencyType.STARS_MEAL)
        entry["stars_drink"] += read_amount(row, CurrencyType.STARS_DRINK)
    return list(grouped.values())


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value else None


async def get_ledger_history(user_id: str, db: AsyncSession, *, limit: int = 20) -> Dict[str, Any]:
    size = max(1, min(int(limit), 100))
    purchases = (
        await db.execute(
            select(Purchase).where(Purchase.user_id == user_id).order_by(Purchase.created_at.desc()).limit(size)
        )
    ).scalars().all()
    gifts_sent = (
        await db.execute(
            select(Gift).where(Gift.from_user_id == user_id).order_by(Gift.created_at.desc()).limit(size)
        )
    ).scalars().all()
    gifts_received = (
        await db.execute(
            select(Gift).where(Gift.to_user_id == user_id).order_by(Gift.created_at.desc()).limit(size)
        )
    ).scalars().all()
    topups = (
        await db.execute(
            select(TopUp).where(TopUp.user_id == user_id).order_by(TopUp.created_at.desc()).limit(size)
        )
    ).scalars().all()
    stars = (
        await db.execute(
            select(StarsTransaction)
            .where(StarsTransaction.user_id == user_id)
            .order_by(StarsTransaction.created_at.desc())
            .limit(size)
        )
    ).scalars().all()

    def _gift(item: Gift) -> Dict[str, Any]:
        return {
            "id": item.id,
            "from_user_id": item.from_user_id,
            "to_user_id": item.to_user_id,
            "restaurant_id": item.restaurant_id,
            "group_id": item.group_id,
            "currency_type": item.type,
            "amount": item.amount,
            "created_at": _iso(item.created_at),
        }

    return {
        "purchases": [
            {
                "id": item.id,
                "restaurant_id": item.restaurant_id,
                "group_id": item.group_id,
                "currency_type": item.payment_type,
                "amount": item.amount,
                "created_at": _iso(item.created_at),
            }
            for item in purchases
        ],
        "gifts_sent": [_gift(item) for item in gifts_sent],
        "gifts_received": [_gift(item) for item in gifts_received],
        "topups": [
            {
                "id": item.id,
                "restaurant_id": item.restaurant_id,
                "amount": item.amount,
                "bonus": item.bonus,
                "total_balance_added": item.total_balance_added,
                "created_at": _iso(item.created_at),
            }
            for item in topups
        ],
        "stars": [
            {
                "id": item.id,
                "restaurant_id": item.restaurant_id,
                "type": item.type,
                "stars_meal": item.stars_meal,
                "stars_drink": item.stars_drink,
                "created_at": _iso(item.created_at),
            }
            for item in stars
        ],
    }
