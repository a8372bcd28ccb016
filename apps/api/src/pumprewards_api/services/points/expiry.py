"""Expiry sweep and expiry reminders over credit lots."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.core.timeutils import ensure_aware, utcnow
from pumprewards_api.models.account import Account, AccountStatus
from pumprewards_api.models.points_ledger import LedgerEntryType, PointsLedgerEntry
from pumprewards_api.services.notifications import (
    AccountNotification,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    notify_best_effort,
)
from pumprewards_api.services.points.errors import PointsError
from pumprewards_api.services.points.service import PointsService


@dataclass(slots=True)
class ExpirySweepSummary:
    accounts_processed: int = 0
    points_expired: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "accounts_processed": self.accounts_processed,
            "points_expired": self.points_expired,
            "errors": self.errors,
        }


@dataclass(slots=True)
class ReminderSummary:
    notifications_sent: int = 0
    notification_failures: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "notifications_sent": self.notifications_sent,
            "notification_failures": self.notification_failures,
        }


class PointsExpiryService:
    """Retire credit lots past their expiry date and warn ahead of it."""

    def __init__(
        self,
        points: PointsService,
        *,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._points = points
        self._notifier = notifier or LoggingNotificationDispatcher()

    async def expire_account(self, account_id: UUID, *, as_of: datetime | None = None) -> int:
        """Expire every due lot of one account in a single transaction.

        Each lot gets its own ``expiry`` entry for ``min(remaining, available)``
        and is marked retired; the lot's ``points`` stay as credited.
        """

        cutoff = ensure_aware(as_of or utcnow())

        async def _work(session: AsyncSession) -> int:
            ledger = self._points.ledger(session)
            account = await ledger.wallets.load_for_update(account_id)
            expired_total = 0
            for lot in await ledger.expiring_lots(account_id, before=cutoff):
                amount = min(lot.remaining_points, int(account.available_points or 0))
                if amount <= 0:
                    lot.expired_at = cutoff
                    continue
                await ledger.debit(
                    account_id,
                    amount,
                    entry_type=LedgerEntryType.EXPIRY,
                    reason=f"Points expired (credited {ensure_aware(lot.created_at).date().isoformat()})",
                    expiring_lot=lot,
                    now=cutoff,
                )
                expired_total += amount
            return expired_total

        return await self._points.run_for_account(account_id, _work)

    async def process_expired_points(self, *, as_of: datetime | None = None) -> ExpirySweepSummary:
        """Sweep every active account holding due lots.

        A failing account is logged and counted; the sweep moves on.
        """

        cutoff = ensure_aware(as_of or utcnow())
        summary = ExpirySweepSummary()
        for account_id in await self._accounts_with_due_lots(cutoff):
            try:
                expired = await self.expire_account(account_id, as_of=cutoff)
            except (PointsError, SQLAlchemyError) as exc:
                summary.errors += 1
                logger.exception("Points expiry failed for account", account_id=str(account_id), error=str(exc))
                continue

            summary.accounts_processed += 1
            summary.points_expired += expired
            if expired > 0:
                await notify_best_effort(
                    self._notifier,
                    AccountNotification(
                        account_id=account_id,
                        title="Points Expired",
                        body=f"{expired} points have expired from your wallet.",
                        kind="points_expired",
                        metadata={"points": str(expired)},
                    ),
                    observability=self._points.observability,
                )

        self._points.observability.record_expiry_sweep(
            accounts=summary.accounts_processed,
            points=summary.points_expired,
            errors=summary.errors,
        )
        logger.bind(summary=summary.as_dict()).info("Points expiry sweep completed")
        return summary

    async def send_expiry_reminders(self, *, as_of: datetime | None = None) -> ReminderSummary:
        """Notify each active account once, for the first window with points due."""

        now = ensure_aware(as_of or utcnow())
        summary = ReminderSummary()
        config = await self._points.config_provider.get_config()
        windows = [day for day in config.notification_days if day > 0]
        if not windows:
            logger.info("No expiry notification days configured, skipping reminders")
            return summary

        horizon = _end_of_day(now + timedelta(days=max(windows)))
        lots_by_account: dict[UUID, list[PointsLedgerEntry]] = defaultdict(list)
        async with self._points.session_factory() as session:
            stmt = (
                select(PointsLedgerEntry)
                .join(Account, Account.id == PointsLedgerEntry.account_id)
                .where(
                    Account.status == AccountStatus.ACTIVE,
                    PointsLedgerEntry.entry_type == LedgerEntryType.CREDIT,
                    PointsLedgerEntry.expired_at.is_(None),
                    PointsLedgerEntry.expiry_date.is_not(None),
                    PointsLedgerEntry.expiry_date > now,
                    PointsLedgerEntry.expiry_date <= horizon,
                    PointsLedgerEntry.consumed_points < PointsLedgerEntry.points,
                )
                .order_by(PointsLedgerEntry.account_id, PointsLedgerEntry.expiry_date)
            )
            for lot in (await session.execute(stmt)).scalars().all():
                lots_by_account[lot.account_id].append(lot)

        for account_id, lots in lots_by_account.items():
            for days in windows:
                target = _end_of_day(now + timedelta(days=days))
                expiring = sum(lot.remaining_points for lot in lots if ensure_aware(lot.expiry_date) <= target)
                if expiring <= 0:
                    continue
                plural = "s" if days > 1 else ""
                delivered = await notify_best_effort(
                    self._notifier,
                    AccountNotification(
                        account_id=account_id,
                        title="Points Expiring Soon!",
                        body=(
                            f"You have {expiring} points expiring in {days} day{plural}. "
                            f"Use them before {target.date().isoformat()}!"
                        ),
                        kind="points_expiry_reminder",
                        metadata={"points": str(expiring), "days": str(days)},
                    ),
                    observability=self._points.observability,
                )
                if delivered:
                    summary.notifications_sent += 1
                else:
                    summary.notification_failures += 1
                break

        logger.bind(summary=summary.as_dict()).info("Points expiry reminders completed")
        return summary

    async def _accounts_with_due_lots(self, cutoff: datetime) -> list[UUID]:
        async with self._points.session_factory() as session:
            stmt = (
                select(PointsLedgerEntry.account_id)
                .join(Account, Account.id == PointsLedgerEntry.account_id)
                .where(
                    Account.status == AccountStatus.ACTIVE,
                    PointsLedgerEntry.entry_type == LedgerEntryType.CREDIT,
                    PointsLedgerEntry.expired_at.is_(None),
                    PointsLedgerEntry.expiry_date.is_not(None),
                    PointsLedgerEntry.expiry_date <= cutoff,
                    PointsLedgerEntry.consumed_points < PointsLedgerEntry.points,
                )
                .distinct()
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())


def _end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


__all__ = ["ExpirySweepSummary", "PointsExpiryService", "ReminderSummary"]
