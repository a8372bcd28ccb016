"""Points ledger entries."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.db.base import Base, enum_values


class LedgerEntryType(str, Enum):
    """Kinds of balance movement recorded on the ledger."""

    CREDIT = "credit"
    DEBIT = "debit"
    EXPIRY = "expiry"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"


class PointsLedgerEntry(Base):
    """One point-affecting event with the balance it left behind.

    ``points`` is signed and never rewritten, so the entries of an account
    always sum to its available balance. Credit lots track how much of them
    later debits consumed and when the expiry sweep retired them. Debits
    record which lots they drew from in ``lot_allocations`` so a refund can
    hand the points back.
    """

    __tablename__ = "points_ledger_entries"
    __table_args__ = (
        Index("ix_points_ledger_account_created", "account_id", "created_at"),
        Index("ix_points_ledger_account_expiry", "account_id", "entry_type", "expiry_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entry_type = Column(
        SqlEnum(LedgerEntryType, name="points_ledger_entry_type", values_callable=enum_values),
        nullable=False,
    )
    points = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    consumed_points = Column(Integer, nullable=False, default=0, server_default="0")
    expired_at = Column(DateTime(timezone=True), nullable=True)
    lot_allocations = Column(JSON, nullable=True)
    transaction_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    redemption_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    reason = Column(String, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    account = relationship("Account", back_populates="ledger_entries")

    @property
    def remaining_points(self) -> int:
        """Unspent, unexpired points left on a credit lot."""

        if self.entry_type != LedgerEntryType.CREDIT:
            return 0
        return max(int(self.points or 0) - int(self.consumed_points or 0), 0)
