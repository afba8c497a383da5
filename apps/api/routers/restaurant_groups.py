"""Restaurant group router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.restaurant import Restaurant
from routers.auth_scope import RESTAURANT_GROUPS, get_owned_restaurant, require_capability
from routers.envelope import CamelModel, success_response
from services.groups import (
    create_group,
    get_group_details,
    get_restaurant_group,
    invite_restaurant,
    list_members,
    list_requests,
    remove_member,
    respond_to_request,
    update_group,
)

router = APIRouter(dependencies=[Depends(require_capability(RESTAURANT_GROUPS))])


class GroupCreateRequest(CamelModel):
    name: str = Field(min_length=2, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)


class GroupUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)


class InviteRequest(CamelModel):
    to_restaurant_id: str = Field(min_length=1)


class RespondRequest(CamelModel):
    accept: bool


@router.post("", status_code=201)
async def create_restaurant_group(
    request: GroupCreateRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await create_group(db, restaurant, name=request.name, description=request.description)
    return success_response("Group created successfully", data)


@router.get("/mine")
async def my_group(
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await get_restaurant_group(db, restaurant)
    message = "Group retrieved successfully" if data else "Restaurant is not part of a group"
    return success_response(message, data)


@router.get("/requests")
async def my_requests(
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    return success_response("Join requests retrieved successfully", await list_requests(db, restaurant))


@router.post("/requests/{request_id}/respond")
async def respond_request(
    request_id: str,
    request: RespondRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await respond_to_request(db, restaurant, request_id, accept=request.accept)
    message = "Join request accepted" if request.accept else "Join request rejected"
    return success_response(message, data)


@router.get("/{group_id}")
async def group_details(group_id: str, db: AsyncSession = Depends(get_db)):
    return success_response("Group retrieved successfully", await get_group_details(db, group_id))


@router.put("/{group_id}")
async def edit_group(
    group_id: str,
    request: GroupUpdateRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await update_group(db, restaurant, group_id, name=request.name, description=request.description)
    return success_response("Group updated successfully", data)


@router.get("/{group_id}/members")
async def group_members(group_id: str, db: AsyncSession = Depends(get_db)):
    return success_response("Members retrieved successfully", await list_members(db, group_id))


@router.post("/{group_id}/invite", status_code=201)
async def invite_to_group(
    group_id: str,
    request: InviteRequest,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    data = await invite_restaurant(db, restaurant, group_id, to_restaurant_id=request.to_restaurant_id)
    return success_response("Invitation sent successfully", data)


@router.delete("/{group_id}/members/{restaurant_id}")
async def remove_group_member(
    group_id: str,
    restaurant_id: str,
    restaurant: Restaurant = Depends(get_owned_restaurant),
    db: AsyncSession = Depends(get_db),
):
    await remove_member(db, restaurant, group_id, restaurant_id)
    return success_response("Member removed successfully")
