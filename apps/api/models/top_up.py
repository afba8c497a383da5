"""Top-up package and top-up audit models."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class TopUpPackage(Base):
    """Prepaid credit offer sold at the counter by a restaurant."""

    __tablename__ = "topup_packages"
    __table_args__ = (UniqueConstraint("restaurant_id", "name", name="uq_topup_package_name"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    bonus = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="EUR")
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_public = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    restaurant = relationship("Restaurant", back_populates="packages")


class TopUp(Base):
    """Cash credited to a customer by a restaurant."""

    __tablename__ = "topups"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=False, index=True)
    package_id = Column(String, ForeignKey("topup_packages.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    bonus = Column(Numeric(12, 2), nullable=False, default=0)
    total_balance_added = Column(Numeric(12, 2), nullable=False)
    method = Column(String, nullable=False, default="QR_SCAN")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
