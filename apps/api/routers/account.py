"""
Customer account router: profile edits, password change and account deletion.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import BALANCE_READ, AuthContext, require_capability
from routers.envelope import CamelModel, success_response
from services.identity import change_password, delete_account, get_profile, update_profile

router = APIRouter()


class ProfileUpdateRequest(CamelModel):
    full_name: Optional[str] = Field(default=None, max_length=120)
    email: Optional[str] = Field(default=None, min_length=3, max_length=254)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)


class DeleteAccountRequest(CamelModel):
    password: str = Field(min_length=1)


@router.get("/me")
async def get_account(
    auth: AuthContext = Depends(require_capability(BALANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    return success_response("Profile retrieved successfully", await get_profile(db, auth.user_id))


@router.put("/me")
async def update_account(
    request: ProfileUpdateRequest,
    auth: AuthContext = Depends(require_capability(BALANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    data = await update_profile(db, auth.user_id, full_name=request.full_name, email=request.email)
    return success_response("Profile updated successfully", data)


@router.put("/me/change-password")
async def update_password(
    request: ChangePasswordRequest,
    auth: AuthContext = Depends(require_capability(BALANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    await change_password(
        db,
        auth.user_id,
        current_password=request.current_password,
        new_password=request.new_password,
    )
    return success_response("Password changed successfully")


@router.delete("/me")
async def remove_account(
    request: DeleteAccountRequest,
    auth: AuthContext = Depends(require_capability(BALANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    await delete_account(db, auth.user_id, password=request.password)
    return success_response("Account deleted successfully")
