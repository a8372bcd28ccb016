"""Purchases recorded at a pump."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.db.base import Base, enum_values


class TransactionCategory(str, Enum):
    FUEL = "Fuel"
    LUBRICANT = "Lubricant"
    STORE = "Store"
    SERVICE = "Service"


class PaymentMode(str, Enum):
    CASH = "Cash"
    CARD = "Card"
    UPI = "UPI"
    WALLET = "Wallet"
    OTHER = "Other"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PumpTransaction(Base):
    """A bill at a pump and the points it earned."""

    __tablename__ = "pump_transactions"
    __table_args__ = (
        UniqueConstraint("pump_id", "bill_number", name="uq_pump_transactions_pump_bill"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pump_id = Column(String, nullable=False, index=True)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    operator_id = Column(UUID(as_uuid=True), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    liters = Column(Numeric(10, 3), nullable=True)
    category = Column(
        SqlEnum(TransactionCategory, name="transaction_category", values_callable=enum_values),
        nullable=False,
    )
    bill_number = Column(String, nullable=False)
    payment_mode = Column(
        SqlEnum(PaymentMode, name="payment_mode", values_callable=enum_values),
        nullable=False,
    )
    points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id"), nullable=True, index=True)
    status = Column(
        SqlEnum(TransactionStatus, name="transaction_status", values_callable=enum_values),
        nullable=False,
        default=TransactionStatus.COMPLETED,
        server_default=TransactionStatus.COMPLETED.value,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
