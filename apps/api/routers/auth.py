"""
Authentication router: registration, login, token refresh and profile.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.envelope import CamelModel, success_response
from routers.rate_limit import rate_limit
from services.identity import (
    get_profile,
    login,
    logout,
    refresh_tokens,
    register_restaurant,
    register_user,
)

router = APIRouter()
admin_router = APIRouter()


class RegisterRequest(CamelModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=8, max_length=128)
    full_name: Optional[str] = Field(default=None, max_length=120)


class RegisterRestaurantRequest(RegisterRequest):
    restaurant_name: str = Field(min_length=2, max_length=120)
    address: str = Field(min_length=2, max_length=255)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LoginRequest(CamelModel):
    email: str
    password: str = Field(min_length=1)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    _rate_limit: None = Depends(rate_limit("auth_register", limit=20, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    data = await register_user(
        db,
        email=request.email,
        password=request.password,
        full_name=request.full_name,
    )
    return success_response("User registered successfully", data)


@router.post("/register-restaurant", status_code=201)
async def register_restaurant_owner(
    request: RegisterRestaurantRequest,
    _rate_limit: None = Depends(rate_limit("auth_register", limit=20, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    data = await register_restaurant(
        db,
        email=request.email,
        password=request.password,
        full_name=request.full_name,
        restaurant_name=request.restaurant_name,
        address=request.address,
        latitude=request.latitude,
        longitude=request.longitude,
    )
    return success_response("Restaurant registered successfully", data)


@router.post("/login")
async def login_user(
    request: LoginRequest,
    _rate_limit: None = Depends(rate_limit("auth_login", limit=30, window_seconds=900)),
    db: AsyncSession = Depends(get_db),
):
    data = await login(db, email=request.email, password=request.password)
    return success_response("Login successful", data)


@router.post("/refresh")
async def refresh(
    request: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    tokens = await refresh_tokens(db, request.refresh_token)
    return success_response("Token refreshed", {"tokens": tokens})


@router.post("/logout")
async def logout_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await logout(db, auth.user_id)
    return success_response("Logged out")


@router.get("/me")
async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Current user profile, with the restaurant summary for owners."""
    return success_response("Profile retrieved", await get_profile(db, auth.user_id))


@admin_router.post("/login")
async def login_admin(
    request: LoginRequest,
    _rate_limit: None = Depends(rate_limit("admin_login", limit=10, window_seconds=900)),
    db: AsyncSession = Depends(get_db),
):
    data = await login(db, email=request.email, password=request.password, admin=True)
    return success_response("Login successful", data)
