"""Redemptions of points against rewards or at the pump."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.db.base import Base, enum_values


class RedemptionStatus(str, Enum):
    """Lifecycle of a redemption code."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_REDEMPTION_STATUSES


_TERMINAL_REDEMPTION_STATUSES = frozenset(
    {
        RedemptionStatus.USED,
        RedemptionStatus.REJECTED,
        RedemptionStatus.EXPIRED,
        RedemptionStatus.CANCELLED,
    }
)


class Redemption(Base):
    """A request to spend points; catalog redemptions carry a reward."""

    __tablename__ = "redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reward_id = Column(UUID(as_uuid=True), ForeignKey("rewards.id"), nullable=True)
    points_used = Column(Integer, nullable=False)
    points_debited = Column(Boolean, nullable=False, default=False, server_default="false")
    redemption_code = Column(String, nullable=False, unique=True, index=True)
    status = Column(
        SqlEnum(RedemptionStatus, name="redemption_status", values_callable=enum_values),
        nullable=False,
        default=RedemptionStatus.PENDING,
        server_default=RedemptionStatus.PENDING.value,
    )
    requested_by = Column(UUID(as_uuid=True), nullable=True)
    approved_by = Column(UUID(as_uuid=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    pump_id = Column(String, nullable=True)
    used_at_pump = Column(String, nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=False)
    rejected_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    account = relationship("Account", back_populates="redemptions")
    reward = relationship("Reward", back_populates="redemptions")

    @property
    def is_catalog(self) -> bool:
        return self.reward_id is not None
