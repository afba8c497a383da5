"""Purchase audit row."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.sql import func

from database import Base


class Purchase(Base):
    """Debit at a single restaurant (restaurant_id) or across a group (group_id)."""

    __tablename__ = "purchases"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=True, index=True)
    group_id = Column(String, ForeignKey("restaurant_groups.id"), nullable=True, index=True)
    payment_type = Column(String, nullable=False)  # balance, stars_meal, stars_drink
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
