"""Points-holding identities and their wallet summary."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.db.base import Base, enum_values


class AccountRole(str, Enum):
    """Roles that can own a wallet or operate on one."""

    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    CUSTOMER = "customer"
    FLEET_OWNER = "fleet_owner"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class Account(Base):
    """Customer, fleet owner, manager or staff member holding points.

    Wallet columns are denormalised from the ledger and are only written by
    the points ledger inside the same transaction as the matching entry.
    """

    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    role = Column(
        SqlEnum(AccountRole, name="account_role", values_callable=enum_values),
        nullable=False,
        default=AccountRole.CUSTOMER,
        server_default=AccountRole.CUSTOMER.value,
    )
    status = Column(
        SqlEnum(AccountStatus, name="account_status", values_callable=enum_values),
        nullable=False,
        default=AccountStatus.ACTIVE,
        server_default=AccountStatus.ACTIVE.value,
    )
    display_name = Column(String, nullable=True)
    mobile = Column(String, nullable=True, unique=True, index=True)
    loyalty_id = Column(String, nullable=True, unique=True, index=True)

    total_earned = Column(Integer, nullable=False, default=0, server_default="0")
    available_points = Column(Integer, nullable=False, default=0, server_default="0")
    redeemed_points = Column(Integer, nullable=False, default=0, server_default="0")
    expired_points = Column(Integer, nullable=False, default=0, server_default="0")
    version = Column(Integer, nullable=False, default=1, server_default="1")

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    ledger_entries = relationship("PointsLedgerEntry", back_populates="account", passive_deletes=True)
    redemptions = relationship("Redemption", back_populates="account", passive_deletes=True)

    __mapper_args__ = {"version_id_col": version}
