"""Notification inbox router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.envelope import CamelModel, success_response
from services.notifications import list_notifications, mark_all_read, mark_notification_read, set_device_token

router = APIRouter()


class DeviceTokenRequest(CamelModel):
    token: Optional[str] = Field(default=None, max_length=4096)


@router.get("")
async def get_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    data = await list_notifications(auth.user_id, db, limit=limit)
    return success_response("Notifications retrieved successfully", data)


@router.patch("/read-all")
async def read_all(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    updated = await mark_all_read(auth.user_id, db)
    return success_response("All notifications marked as read", {"updated": updated})


@router.patch("/{notification_id}/read")
async def read_one(
    notification_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    data = await mark_notification_read(auth.user_id, notification_id, db)
    return success_response("Notification marked as read", data)


@router.post("/device-token")
async def register_device_token(
    request: DeviceTokenRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Store (or clear, with an empty token) the device push token."""
    await set_device_token(auth.user_id, request.token, db)
    return success_response("Device token saved")
