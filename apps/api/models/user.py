"""User model."""

import enum
import uuid

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Role(str, enum.Enum):
    USER = "USER"
    RESTAURANT_OWNER = "RESTAURANT_OWNER"
    ADMIN = "ADMIN"
    SUB_ADMIN = "SUB_ADMIN"


class User(Base):
    """Customer, restaurant owner or administrator account."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default=Role.USER.value)
    qr_code = Column(String, unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    refresh_token = Column(Text, nullable=True)
    firebase_token = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    restaurant = relationship("Restaurant", back_populates="owner", uselist=False)
    balances = relationship("UserRestaurantBalance", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
