"""Promotional campaigns that modify points earned."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.db.base import Base, enum_values


class CampaignType(str, Enum):
    MULTIPLIER = "multiplier"
    BONUS_POINTS = "bonus_points"
    BONUS_PERCENTAGE = "bonus_percentage"


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Campaign(Base):
    """Time-boxed earning rule scoped to pumps, categories and spend."""

    __tablename__ = "campaigns"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    campaign_type = Column(
        SqlEnum(CampaignType, name="campaign_type", values_callable=enum_values),
        nullable=False,
    )
    multiplier = Column(Numeric(8, 2), nullable=True)
    bonus_points = Column(Integer, nullable=True)
    bonus_percentage = Column(Numeric(5, 2), nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False, index=True)
    end_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(
        SqlEnum(CampaignStatus, name="campaign_status", values_callable=enum_values),
        nullable=False,
        default=CampaignStatus.DRAFT,
        server_default=CampaignStatus.DRAFT.value,
        index=True,
    )
    min_amount = Column(Numeric(12, 2), nullable=True)
    categories = Column(JSON, nullable=False, default=list)
    frequency_limit = Column(Integer, nullable=True)
    pump_ids = Column(JSON, nullable=False, default=list)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
