"""Points configuration provider with a bounded-TTL cache."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Protocol

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.core.settings import settings
from pumprewards_api.models.system_config import SystemConfig
from pumprewards_api.models.transaction import TransactionCategory
from pumprewards_api.services.points.errors import InvalidInputError

SessionFactory = Callable[[], AsyncSession]


@dataclass(frozen=True, slots=True)
class PointsRates:
    """Earning rates: points per litre of fuel, points per ₹100 otherwise."""

    fuel_per_liter: Decimal = Decimal("1")
    lubricant_per_100: Decimal = Decimal("5")
    store_per_100: Decimal = Decimal("5")
    service_per_100: Decimal = Decimal("5")

    def per_100(self, category: TransactionCategory) -> Decimal:
        if category == TransactionCategory.LUBRICANT:
            return self.lubricant_per_100
        if category == TransactionCategory.STORE:
            return self.store_per_100
        if category == TransactionCategory.SERVICE:
            return self.service_per_100
        raise InvalidInputError(f"{category.value} is not priced per ₹100")


@dataclass(frozen=True, slots=True)
class PointsConfig:
    rates: PointsRates = field(default_factory=PointsRates)
    expiry_months: int = 12
    notification_days: tuple[int, ...] = ()


class ConfigProvider(Protocol):
    """Anything that can hand the engine a current configuration."""

    async def get_config(self) -> PointsConfig:
        ...


def config_from_settings() -> PointsConfig:
    return PointsConfig(
        rates=PointsRates(
            fuel_per_liter=Decimal(str(settings.points_fuel_per_liter)),
            lubricant_per_100=Decimal(str(settings.points_lubricant_per_100)),
            store_per_100=Decimal(str(settings.points_store_per_100)),
            service_per_100=Decimal(str(settings.points_service_per_100)),
        ),
        expiry_months=settings.points_expiry_months,
        notification_days=tuple(settings.points_expiry_notification_days),
    )


class StaticConfigProvider:
    """Fixed configuration, used by tests and embedded callers."""

    def __init__(self, config: PointsConfig | None = None) -> None:
        self._config = config or PointsConfig()

    async def get_config(self) -> PointsConfig:
        return self._config


class SystemConfigProvider:
    """Read the singleton ``system_config`` row, cached for a short TTL.

    Rates and expiry months may be edited while the service runs; callers
    tolerate a few seconds of staleness, never a process lifetime.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._ttl_seconds = settings.system_config_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cached: PointsConfig | None = None
        self._loaded_at: float = 0.0
        self._refresh_lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._cached = None

    async def get_config(self) -> PointsConfig:
        if self._is_fresh():
            return self._cached  # type: ignore[return-value]

        async with self._refresh_lock:
            if self._is_fresh():
                return self._cached  # type: ignore[return-value]
            async with self._session_factory() as session:
                record = await session.get(SystemConfig, 1)
            config = self._to_config(record) if record is not None else config_from_settings()
            self._cached = config
            self._loaded_at = self._clock()
            logger.debug(
                "Loaded points configuration",
                source="database" if record is not None else "settings",
                expiry_months=config.expiry_months,
            )
            return config

    async def update_config(
        self,
        *,
        fuel_points_per_liter: Decimal | float | None = None,
        lubricant_points_per_100: Decimal | float | None = None,
        store_points_per_100: Decimal | float | None = None,
        service_points_per_100: Decimal | float | None = None,
        expiry_duration_months: int | None = None,
        expiry_notification_days: Iterable[int] | None = None,
    ) -> PointsConfig:
        """Persist admin edits and drop the cache so the next read sees them."""

        rates = {
            "fuel_points_per_liter": fuel_points_per_liter,
            "lubricant_points_per_100": lubricant_points_per_100,
            "store_points_per_100": store_points_per_100,
            "service_points_per_100": service_points_per_100,
        }
        for name, value in rates.items():
            if value is not None and Decimal(str(value)) < 0:
                raise InvalidInputError(f"{name} must be non-negative")
        if expiry_duration_months is not None and expiry_duration_months < 1:
            raise InvalidInputError("expiry_duration_months must be at least 1")
        days: list[int] | None = None
        if expiry_notification_days is not None:
            days = list(expiry_notification_days)
            if any(not isinstance(day, int) or day < 0 for day in days):
                raise InvalidInputError("expiry_notification_days must be non-negative integers")

        async with self._session_factory() as session:
            async with session.begin():
                record = await session.get(SystemConfig, 1)
                if record is None:
                    defaults = config_from_settings()
                    record = SystemConfig(
                        id=1,
                        fuel_points_per_liter=defaults.rates.fuel_per_liter,
                        lubricant_points_per_100=defaults.rates.lubricant_per_100,
                        store_points_per_100=defaults.rates.store_per_100,
                        service_points_per_100=defaults.rates.service_per_100,
                        expiry_duration_months=defaults.expiry_months,
                        expiry_notification_days=list(defaults.notification_days),
                    )
                    session.add(record)
                for name, value in rates.items():
                    if value is not None:
                        setattr(record, name, Decimal(str(value)))
                if expiry_duration_months is not None:
                    record.expiry_duration_months = expiry_duration_months
                if days is not None:
                    record.expiry_notification_days = days
            config = self._to_config(record)

        self.invalidate()
        logger.info("Updated points configuration", expiry_months=config.expiry_months)
        return config

    def _is_fresh(self) -> bool:
        if self._cached is None:
            return False
        return (self._clock() - self._loaded_at) < self._ttl_seconds

    @staticmethod
    def _to_config(record: SystemConfig) -> PointsConfig:
        return PointsConfig(
            rates=PointsRates(
                fuel_per_liter=Decimal(record.fuel_points_per_liter),
                lubricant_per_100=Decimal(record.lubricant_points_per_100),
                store_per_100=Decimal(record.store_points_per_100),
                service_per_100=Decimal(record.service_points_per_100),
            ),
            expiry_months=int(record.expiry_duration_months or 12),
            notification_days=tuple(int(day) for day in (record.expiry_notification_days or [])),
        )


__all__ = [
    "ConfigProvider",
    "PointsConfig",
    "PointsRates",
    "StaticConfigProvider",
    "SystemConfigProvider",
    "config_from_settings",
]
