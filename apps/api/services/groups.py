"""Restaurant groups: creation, invitations and the shared balance pool."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.group import GroupJoinRequest, GroupMembership, RestaurantGroup
from models.restaurant import Restaurant
from services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from services.notifications import notify_user

logger = logging.getLogger(__name__)

PENDING = "PENDING"
ACCEPTED = "ACCEPTED"
REJECTED = "REJECTED"


async def group_pool_restaurant_ids(db: AsyncSession, group: RestaurantGroup) -> List[str]:
    """Owner restaurant plus members, in ascending id order."""
    result = await db.execute(select(GroupMembership.restaurant_id).where(GroupMembership.group_id == group.id))
    ids = {group.owner_id}
    ids.update(result.scalars().all())
    return sorted(ids)


async def _get_group(db: AsyncSession, group_id: str) -> RestaurantGroup:
    result = await db.execute(select(RestaurantGroup).where(RestaurantGroup.id == group_id))
    group = result.scalar_one_or_none()
    if not group:
        raise NotFoundError("Group not found")
    return group


async def _get_owned_group(db: AsyncSession, restaurant: Restaurant, group_id: str) -> RestaurantGroup:
    group = await _get_group(db, group_id)
    if group.owner_id != restaurant.id:
        raise PermissionDeniedError("Only the group owner can manage this group")
    return group


async def _group_affiliation(db: AsyncSession, restaurant_id: str) -> Optional[str]:
    """Return why a restaurant cannot join another group, or None if it is free."""
    owned = await db.execute(select(RestaurantGroup.id).where(RestaurantGroup.owner_id == restaurant_id))
    if owned.scalar_one_or_none():
        return "Restaurant already owns a group"
    membership = await db.execute(
        select(GroupMembership.group_id).where(GroupMembership.restaurant_id == restaurant_id)
    )
    if membership.scalar_one_or_none():
        return "Restaurant already belongs to a group"
    return None


async def _members(db: AsyncSession, group_id: str) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(GroupMembership, Restaurant)
        .join(Restaurant, Restaurant.id == GroupMembership.restaurant_id)
        .where(GroupMembership.group_id == group_id)
        .order_by(Restaurant.id.asc())
    )
    return [
        {
            "restaurant_id": restaurant.id,
            "name": restaurant.name,
            "address": restaurant.address,
            "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
        }
        for membership, restaurant in result.all()
    ]


def _serialize_request(request: GroupJoinRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "group_id": request.group_id,
        "from_restaurant_id": request.from_restaurant_id,
        "to_restaurant_id": request.to_restaurant_id,
        "status": request.status,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "responded_at": request.responded_at.isoformat() if request.responded_at else None,
    }


async def get_group_details(db: AsyncSession, group_id: str) -> Dict[str, Any]:
    group = await _get_group(db, group_id)
    owner_result = await db.execute(select(Restaurant).where(Restaurant.id == group.owner_id))
    owner = owner_result.scalar_one_or_none()
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "owner": {
            "restaurant_id": group.owner_id,
            "name": owner.name if owner else None,
        },
        "members": await _members(db, group.id),
        "created_at": group.created_at.isoformat() if group.created_at else None,
    }


async def get_restaurant_group(db: AsyncSession, restaurant: Restaurant) -> Optional[Dict[str, Any]]:
    """Group the restaurant owns or belongs to, if any."""
    owned = await db.execute(select(RestaurantGroup.id).where(RestaurantGroup.owner_id == restaurant.id))
    group_id = owned.scalar_one_or_none()
    if not group_id:
        membership = await db.execute(
            select(GroupMembership.group_id).where(GroupMembership.restaurant_id == restaurant.id)
        )
        group_id = membership.scalar_one_or_none()
    if not group_id:
        return None
    return await get_group_details(db, group_id)


async def create_group(
    db: AsyncSession,
    restaurant: Restaurant,
    *,
    name: str,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    reason = await _group_affiliation(db, restaurant.id)
    if reason:
        raise ConflictError(reason)

    group = RestaurantGroup(name=name.strip(), description=description, owner_id=restaurant.id)
    db.add(group)
    restaurant.is_group_member = True
    await db.commit()
    logger.info("group_created group=%s owner=%s", group.id, restaurant.id)
    return await get_group_details(db, group.id)


async def update_group(
    db: AsyncSession,
    restaurant: Restaurant,
    group_id: str,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    group = await _get_owned_group(db, restaurant, group_id)
    if name is not None:
        if not name.strip():
            raise ValidationError("Group name cannot be empty")
        group.name = name.strip()
    if description is not None:
        group.description = description
    await db.commit()
    return await get_group_details(db, group.id)


async def list_members(db: AsyncSession, group_id: str) -> List[Dict[str, Any]]:
    group = await _get_group(db, group_id)
    return await _members(db, group.id)


async def invite_restaurant(
    db: AsyncSession,
    restaurant: Restaurant,
    group_id: str,
    *,
    to_restaurant_id: str,
) -> Dict[str, Any]:
    group = await _get_owned_group(db, restaurant, group_id)
    if to_restaurant_id == restaurant.id:
        raise ValidationError("Cannot invite your own restaurant")

    target_result = await db.execute(select(Restaurant).where(Restaurant.id == to_restaurant_id))
    target = target_result.scalar_one_or_none()
    if not target:
        raise NotFoundError("Restaurant not found")

    reason = await _group_affiliation(db, target.id)
    if reason:
        raise ConflictError(reason)

    pending = await db.execute(
        select(GroupJoinRequest.id).where(
            GroupJoinRequest.group_id == group.id,
            GroupJoinRequest.to_restaurant_id == target.id,
            GroupJoinRequest.status == PENDING,
        )
    )
    if pending.scalar_one_or_none():
        raise ConflictError("An invitation is already pending for this restaurant")

    request = GroupJoinRequest(
        group_id=group.id,
        from_restaurant_id=restaurant.id,
        to_restaurant_id=target.id,
        status=PENDING,
    )
    db.add(request)
    await db.commit()
    await db.refresh(request)
    logger.info("group_invite group=%s to=%s", group.id, target.id)

    await notify_user(
        db,
        user_id=target.user_id,
        title="Group invitation",
        body=f"{restaurant.name} invited you to join the group {group.name}",
        type="GROUP",
    )
    return _serialize_request(request)


async def respond_to_request(
    db: AsyncSession,
    restaurant: Restaurant,
    request_id: str,
    *,
    accept: bool,
) -> Dict[str, Any]:
    result = await db.execute(
        select(GroupJoinRequest).where(GroupJoinRequest.id == request_id).with_for_update()
    )
    request = result.scalar_one_or_none()
    if not request or request.to_restaurant_id != restaurant.id:
        raise NotFoundError("Join request not found")
    if request.status != PENDING:
        raise ValidationError("Join request already handled")

    group = await _get_group(db, request.group_id)
    if accept:
        reason = await _group_affiliation(db, restaurant.id)
        if reason:
            raise ConflictError(reason)
        db.add(GroupMembership(group_id=group.id, restaurant_id=restaurant.id))
        restaurant.is_group_member = True
        request.status = ACCEPTED
    else:
        request.status = REJECTED
    request.responded_at = datetime.now(timezone.utc)
    await db.commit()
    payload = _serialize_request(request)
    logger.info("group_request request=%s status=%s", request.id, request.status)

    owner_result = await db.execute(select(Restaurant.user_id).where(Restaurant.id == group.owner_id))
    await notify_user(
        db,
        user_id=owner_result.scalar_one_or_none(),
        title="Group invitation answered",
        body=f"{restaurant.name} {'accepted' if accept else 'rejected'} your invitation to {group.name}",
        type="GROUP",
    )
    return payload


async def list_requests(db: AsyncSession, restaurant: Restaurant) -> Dict[str, Any]:
    incoming = await db.execute(
        select(GroupJoinRequest)
        .where(GroupJoinRequest.to_restaurant_id == restaurant.id)
        .order_by(GroupJoinRequest.created_at.desc())
    )
    outgoing = await db.execute(
        select(GroupJoinRequest)
        .where(GroupJoinRequest.from_restaurant_id == restaurant.id)
        .order_by(GroupJoinRequest.created_at.desc())
    )
    return {
        "incoming": [_serialize_request(item) for item in incoming.scalars().all()],
        "outgoing": [_serialize_request(item) for item in outgoing.scalars().all()],
    }


async def remove_member(
    db: AsyncSession,
    restaurant: Restaurant,
    group_id: str,
    member_restaurant_id: str,
) -> None:
    group = await _get_owned_group(db, restaurant, group_id)
    result = await db.execute(
        select(GroupMembership).where(
            GroupMembership.group_id == group.id,
            GroupMembership.restaurant_id == member_restaurant_id,
        )
    )
    membership = result.scalar_one_or_none()
    if not membership:
        raise NotFoundError("Restaurant is not a member of this group")

    member_result = await db.execute(select(Restaurant).where(Restaurant.id == member_restaurant_id))
    member = member_result.scalar_one_or_none()
    await db.delete(membership)
    if member:
        member.is_group_member = False
    await db.commit()
    logger.info("group_member_removed group=%s restaurant=%s", group.id, member_restaurant_id)

    if member:
        await notify_user(
            db,
            user_id=member.user_id,
            title="Removed from group",
            body=f"Your restaurant was removed from the group {group.name}",
            type="GROUP",
        )
