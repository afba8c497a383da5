"""In-app notifications with best-effort device push.

Dispatch is fire-and-forget: callers have already committed their own work, so
a failure here is logged and never propagated.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.notification import Notification
from models.user import User
from services.errors import NotFoundError

logger = logging.getLogger(__name__)


async def send_push(token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> bool:
    """Send one FCM push. Returns False when push is disabled or rejected."""
    if not settings.PUSH_NOTIFICATIONS_ENABLED or not settings.FCM_SERVER_KEY:
        return False

    payload: Dict[str, Any] = {
        "to": token,
        "notification": {"title": title, "body": body, "sound": "default"},
    }
    if data:
        payload["data"] = data

    headers = {
        "Authorization": f"key={settings.FCM_SERVER_KEY}",
        "Content-Type": "application/json",
    }
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.post(settings.FCM_URL, headers=headers, json=payload)
    if response.status_code >= 400:
        logger.warning("FCM push rejected status=%s body=%s", response.status_code, response.text[:200])
        return False
    return True


async def notify_user(
    db: AsyncSession,
    *,
    user_id: Optional[str],
    title: str,
    body: str,
    type: str = "GENERAL",
    data: Optional[Dict[str, str]] = None,
) -> Optional[Notification]:
    """Store an inbox entry and push it to the user's device.

    Runs in its own session on the caller's engine: a failure rolls back only the
    notification, leaving the caller's session and loaded objects untouched.
    """
    if not user_id:
        return None

    async with AsyncSession(bind=db.bind, expire_on_commit=False) as session:
        try:
            notification = Notification(user_id=user_id, title=title, body=body, type=type)
            session.add(notification)
            await session.commit()
        except Exception:
            logger.exception("Could not store notification type=%s for user=%s", type, user_id)
            return None

        try:
            result = await session.execute(select(User.firebase_token).where(User.id == user_id))
            token = result.scalar_one_or_none()
            if not token:
                logger.debug("User %s has no device token; push skipped", user_id)
            else:
                await send_push(token, title, body, data)
        except Exception as exc:
            logger.warning("Push notification failed for user=%s: %s", user_id, exc)

    return notification


async def list_notifications(user_id: str, db: AsyncSession, *, limit: int = 50) -> Dict[str, Any]:
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(max(1, min(int(limit), 200)))
    )
    items = result.scalars().all()
    unread_result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
    )
    return {
        "items": [serialize_notification(item) for item in items],
        "unread_count": int(unread_result.scalar() or 0),
    }


async def mark_notification_read(user_id: str, notification_id: str, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    await db.commit()
    return serialize_notification(notification)


async def mark_all_read(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await db.commit()
    return int(result.rowcount or 0)


async def set_device_token(user_id: str, token: Optional[str], db: AsyncSession) -> None:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    user.firebase_token = (token or "").strip() or None
    await db.commit()


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "title": notification.title,
        "body": notification.body,
        "type": notification.type,
        "is_read": bool(notification.is_read),
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }