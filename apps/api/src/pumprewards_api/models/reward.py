"""Reward catalogue."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.db.base import Base, enum_values


class RewardType(str, Enum):
    DISCOUNT = "discount"
    FREE_ITEM = "free_item"
    CASHBACK = "cashback"
    VOUCHER = "voucher"


class RewardAvailability(str, Enum):
    UNLIMITED = "unlimited"
    LIMITED = "limited"


class RewardStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class Reward(Base):
    """Catalogue item customers redeem points against."""

    __tablename__ = "rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    reward_type = Column(
        SqlEnum(RewardType, name="reward_type", values_callable=enum_values),
        nullable=False,
        default=RewardType.DISCOUNT,
        server_default=RewardType.DISCOUNT.value,
    )
    description = Column(Text, nullable=True)
    points_required = Column(Integer, nullable=False)
    value = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    availability = Column(
        SqlEnum(RewardAvailability, name="reward_availability", values_callable=enum_values),
        nullable=False,
        default=RewardAvailability.UNLIMITED,
        server_default=RewardAvailability.UNLIMITED.value,
    )
    total_quantity = Column(Integer, nullable=True)
    redeemed_quantity = Column(Integer, nullable=False, default=0, server_default="0")
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SqlEnum(RewardStatus, name="reward_status", values_callable=enum_values),
        nullable=False,
        default=RewardStatus.ACTIVE,
        server_default=RewardStatus.ACTIVE.value,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    redemptions = relationship("Redemption", back_populates="reward")
