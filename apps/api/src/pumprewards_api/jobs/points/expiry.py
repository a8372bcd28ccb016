"""Jobs that retire expired points and warn about upcoming expiry."""

# meta: job: points-expiry

from __future__ import annotations

from typing import Any, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.services.notifications import NotificationDispatcher
from pumprewards_api.services.points import PointsExpiryService, PointsService

SessionFactory = Callable[[], AsyncSession]


async def run_points_expiry(
    *,
    session_factory: SessionFactory,
    notifier: NotificationDispatcher | None = None,
) -> Dict[str, Any]:
    """Expire due credit lots for every active account."""

    service = PointsExpiryService(PointsService(session_factory), notifier=notifier)
    summary = (await service.process_expired_points()).as_dict()
    logger.bind(summary=summary).info("Points expiry job completed")
    return summary


async def send_points_expiry_reminders(
    *,
    session_factory: SessionFactory,
    notifier: NotificationDispatcher | None = None,
) -> Dict[str, Any]:
    """Warn accounts whose points fall inside a configured reminder window."""

    service = PointsExpiryService(PointsService(session_factory), notifier=notifier)
    summary = (await service.send_expiry_reminders()).as_dict()
    logger.bind(summary=summary).info("Points expiry reminder job completed")
    return summary


__all__ = ["run_points_expiry", "send_points_expiry_reminders"]
