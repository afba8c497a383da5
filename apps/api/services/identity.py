"""Account registration, login, refresh-token rotation and self-service account changes."""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.balance import UserRestaurantBalance
from models.gift import Gift
from models.notification import Notification
from models.purchase import Purchase
from models.restaurant import Restaurant
from models.scan_log import ScanLog, StarsTransaction
from models.top_up import TopUp
from models.user import Role, User
from services.errors import AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from services.passwords import hash_password, verify_password
from services.session_token import create_token_pair, decode_refresh_token
from services.subscriptions import start_free_trial

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ADMIN_ROLES = {Role.ADMIN.value, Role.SUB_ADMIN.value}


def normalize_email(value: Any) -> str:
    email = str(value or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address")
    return email


def serialize_restaurant(restaurant: Restaurant) -> Dict[str, Any]:
    return {
        "id": restaurant.id,
        "name": restaurant.name,
        "address": restaurant.address,
        "latitude": restaurant.latitude,
        "longitude": restaurant.longitude,
        "qr_code_meal": restaurant.qr_code_meal,
        "qr_code_drink": restaurant.qr_code_drink,
        "is_group_member": bool(restaurant.is_group_member),
        "is_active": bool(restaurant.is_active),
        "is_subscription_active": bool(restaurant.is_subscription_active),
    }


def serialize_user(user: User, restaurant: Optional[Restaurant] = None) -> Dict[str, Any]:
    payload = {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "qr_code": user.qr_code,
    }
    if restaurant is not None:
        payload["restaurant"] = serialize_restaurant(restaurant)
    return payload


async def _ensure_email_free(db: AsyncSession, email: str) -> None:
    result = await db.execute(select(User.id).where(User.email == email))
    if result.scalar_one_or_none():
        raise ConflictError("Email already registered")


def _issue_tokens(user: User) -> Dict[str, Any]:
    tokens = create_token_pair(user.id, user.role)
    user.refresh_token = tokens["refresh_token"]
    return tokens


async def register_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    full_name: Optional[str] = None,
) -> Dict[str, Any]:
    clean_email = normalize_email(email)
    await _ensure_email_free(db, clean_email)

    user = User(
        email=clean_email,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or None,
        role=Role.USER.value,
        qr_code=str(uuid.uuid4()),
    )
    db.add(user)
    await db.flush()
    tokens = _issue_tokens(user)
    await db.commit()
    logger.info("user_registered user=%s", user.id)
    return {"user": serialize_user(user), "tokens": tokens}


async def register_restaurant(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    restaurant_name: str,
    address: str,
    latitude: float,
    longitude: float,
    full_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an owner account, its restaurant and a free-trial subscription together."""
    clean_email = normalize_email(email)
    await _ensure_email_free(db, clean_email)

    user = User(
        email=clean_email,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or None,
        role=Role.RESTAURANT_OWNER.value,
        qr_code=str(uuid.uuid4()),
    )
    db.add(user)
    await db.flush()

    restaurant = Restaurant(
        user_id=user.id,
        name=restaurant_name.strip(),
        address=address.strip(),
        latitude=latitude,
        longitude=longitude,
        qr_code_meal=str(uuid.uuid4()),
        qr_code_drink=str(uuid.uuid4()),
    )
    db.add(restaurant)
    await db.flush()

    try:
        await start_free_trial(db, restaurant)
    except Exception:
        await db.rollback()
        raise

    tokens = _issue_tokens(user)
    await db.commit()
    logger.info("restaurant_registered user=%s restaurant=%s", user.id, restaurant.id)
    return {"user": serialize_user(user, restaurant), "tokens": tokens}


async def login(db: AsyncSession, *, email: str, password: str, admin: bool = False) -> Dict[str, Any]:
    clean_email = str(email or "").strip().lower()
    result = await db.execute(select(User).where(User.email == clean_email))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")

    is_admin = user.role in ADMIN_ROLES
    if admin and not is_admin:
        raise PermissionDeniedError("Only admins can login from this route")
    if not admin and is_admin:
        raise PermissionDeniedError("Admins cannot login from this route")
    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    tokens = _issue_tokens(user)
    await db.commit()
    restaurant = await _owned_restaurant(db, user)
    logger.info("login user=%s role=%s", user.id, user.role)
    return {"user": serialize_user(user, restaurant), "tokens": tokens}


async def refresh_tokens(db: AsyncSession, refresh_token: str) -> Dict[str, Any]:
    try:
        payload = decode_refresh_token(refresh_token)
    except ValueError as exc:
        raise AuthenticationError(str(exc)) from exc

    result = await db.execute(select(User).where(User.id == str(payload["sub"])))
    user = result.scalar_one_or_none()
    if not user or not user.refresh_token or user.refresh_token != refresh_token:
        raise AuthenticationError("Refresh token is no longer valid")

    tokens = _issue_tokens(user)
    await db.commit()
    return tokens


async def logout(db: AsyncSession, user_id: str) -> None:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    user.refresh_token = None
    await db.commit()


async def _owned_restaurant(db: AsyncSession, user: User) -> Optional[Restaurant]:
    if user.role != Role.RESTAURANT_OWNER.value:
        return None
    result = await db.execute(select(Restaurant).where(Restaurant.user_id == user.id))
    return result.scalar_one_or_none()


async def get_profile(db: AsyncSession, user_id: str) -> Dict[str, Any]:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    return serialize_user(user, await _owned_restaurant(db, user))


async def _get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    return user


async def update_profile(
    db: AsyncSession,
    user_id: str,
    *,
    full_name: Optional[str] = None,
    email: Optional[str] = None,
) -> Dict[str, Any]:
    user = await _get_user(db, user_id)

    if full_name is not None and full_name.strip():
        user.full_name = full_name.strip()

    if email is not None and str(email).strip().lower() != user.email:
        clean_email = normalize_email(email)
        taken = await db.execute(select(User.id).where(User.email == clean_email, User.id != user.id))
        if taken.scalar_one_or_none():
            raise ConflictError("Email is already taken")
        user.email = clean_email

    await db.commit()
    logger.info("profile_updated user=%s", user.id)
    return serialize_user(user)


async def change_password(db: AsyncSession, user_id: str, *, current_password: str, new_password: str) -> None:
    """Replace the password hash and revoke the outstanding refresh token."""
    user = await _get_user(db, user_id)
    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    user.refresh_token = None
    await db.commit()
    logger.info("password_changed user=%s", user.id)


async def delete_account(db: AsyncSession, user_id: str, *, password: str) -> None:
    """Remove a customer account together with every row that references it."""
    user = await _get_user(db, user_id)
    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Password is incorrect")

    for model in (UserRestaurantBalance, Notification, ScanLog, StarsTransaction, Purchase, TopUp):
        await db.execute(delete(model).where(model.user_id == user.id))
    await db.execute(delete(Gift).where(or_(Gift.from_user_id == user.id, Gift.to_user_id == user.id)))
    await db.execute(delete(User).where(User.id == user.id))
    await db.commit()
    logger.info("account_deleted user=%s", user_id)


async def list_users(
    db: AsyncSession,
    *,
    viewer_role: str,
    role: Optional[str] = None,
    email: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    """Paginated user directory. Sub-admins never see ADMIN accounts."""
    filters = []
    if role:
        role_value = role.strip().upper()
        if role_value not in {member.value for member in Role}:
            raise ValidationError("Invalid role")
        if viewer_role == Role.SUB_ADMIN.value and role_value == Role.ADMIN.value:
            raise PermissionDeniedError("You cannot list admin users")
        filters.append(User.role == role_value)
    elif viewer_role == Role.SUB_ADMIN.value:
        filters.append(User.role != Role.ADMIN.value)
    if email and email.strip():
        filters.append(func.lower(User.email).like(f"%{email.strip().lower()}%"))

    page_number = max(int(page), 1)
    size = max(1, min(int(page_size), 100))
    total_items = int((await db.execute(select(func.count(User.id)).where(*filters))).scalar_one() or 0)
    result = await db.execute(
        select(User)
        .where(*filters)
        .order_by(User.created_at.desc(), User.id.asc())
        .offset((page_number - 1) * size)
        .limit(size)
    )
    users = [
        {
            "id": user.id,
            "email": user.email,
            "full_name": user.full_name,
            "role": user.role,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }
        for user in result.scalars().all()
    ]
    return {
        "users": users,
        "pagination": {
            "total_items": total_items,
            "total_pages": (total_items + size - 1) // size,
            "current_page": page_number,
            "page_size": size,
        },
    }
