"""Restaurant model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Restaurant(Base):
    """A venue owned by exactly one RESTAURANT_OWNER user."""

    __tablename__ = "restaurants"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    qr_code_meal = Column(String, unique=True, nullable=True)
    qr_code_drink = Column(String, unique=True, nullable=True)
    is_group_member = Column(Boolean, nullable=False, default=False)
    # Recomputed by the subscription sweep.
    is_active = Column(Boolean, nullable=False, default=False)
    is_subscription_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    owner = relationship("User", back_populates="restaurant")
    balances = relationship("UserRestaurantBalance", back_populates="restaurant")
    subscriptions = relationship("Subscription", back_populates="restaurant")
    packages = relationship("TopUpPackage", back_populates="restaurant", cascade="all, delete-orphan")
