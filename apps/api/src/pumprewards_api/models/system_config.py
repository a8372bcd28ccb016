"""Singleton system configuration row."""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.db.base import Base


class SystemConfig(Base):
    """Admin-editable earning rates and expiry policy."""

    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, default=1)
    fuel_points_per_liter = Column(Numeric(10, 3), nullable=False, default=1, server_default="1")
    lubricant_points_per_100 = Column(Numeric(10, 3), nullable=False, default=5, server_default="5")
    store_points_per_100 = Column(Numeric(10, 3), nullable=False, default=5, server_default="5")
    service_points_per_100 = Column(Numeric(10, 3), nullable=False, default=5, server_default="5")
    expiry_duration_months = Column(Integer, nullable=False, default=12, server_default="12")
    expiry_notification_days = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
