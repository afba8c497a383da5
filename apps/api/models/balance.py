"""Per-(user, restaurant) balance record."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class UserRestaurantBalance(Base):
    """Cash balance and star counters a user holds at one restaurant."""

    __tablename__ = "user_restaurant_balances"
    __table_args__ = (UniqueConstraint("user_id", "restaurant_id", name="uq_balance_user_restaurant"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=False, index=True)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    stars_meal = Column(Integer, nullable=False, default=0)
    stars_drink = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="balances")
    restaurant = relationship("Restaurant", back_populates="balances")
