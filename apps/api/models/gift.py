"""Gift audit row."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.sql import func

from database import Base


class Gift(Base):
    """Peer-to-peer transfer of one currency at a restaurant or across a group."""

    __tablename__ = "gifts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    from_user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    to_user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String, ForeignKey("restaurants.id"), nullable=True)
    group_id = Column(String, ForeignKey("restaurant_groups.id"), nullable=True)
    type = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default="completed")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
