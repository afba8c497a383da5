"""Restaurant group, membership and join-request models."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class RestaurantGroup(Base):
    """Restaurants pooling their customers' balances."""

    __tablename__ = "restaurant_groups"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(String, ForeignKey("restaurants.id"), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("Restaurant")
    members = relationship("GroupMembership", back_populates="group", cascade="all, delete-orphan")
    join_requests = relationship("GroupJoinRequest", back_populates="group", cascade="all, delete-orphan")


class GroupMembership(Base):
    __tablename__ = "group_memberships"

    group_id = Column(String, ForeignKey("restaurant_groups.id"), primary_key=True)
    # A restaurant belongs to at most one group.
    restaurant_id = Column(String, ForeignKey("restaurants.id"), primary_key=True, unique=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    group = relationship("RestaurantGroup", back_populates="members")
    restaurant = relationship("Restaurant")


class GroupJoinRequest(Base):
    __tablename__ = "group_join_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    group_id = Column(String, ForeignKey("restaurant_groups.id"), nullable=False, index=True)
    from_restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=False)
    to_restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="PENDING")  # PENDING, ACCEPTED, REJECTED
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)

    group = relationship("RestaurantGroup", back_populates="join_requests")
