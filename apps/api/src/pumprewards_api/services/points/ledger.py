"""Ledger engine: every balance change is one entry plus one wallet update."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from pumprewards_api.core.timeutils import add_months, utcnow
from pumprewards_api.models.points_ledger import LedgerEntryType, PointsLedgerEntry
from pumprewards_api.observability.points import PointsObservabilityStore, get_points_store
from pumprewards_api.services.points.config import ConfigProvider
from pumprewards_api.services.points.errors import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidInputError,
)
from pumprewards_api.services.points.wallet import WalletBucket, WalletStore, WalletSummary

CREDIT_BUCKETS: dict[LedgerEntryType, WalletBucket] = {
    LedgerEntryType.CREDIT: WalletBucket.EARNED,
    LedgerEntryType.ADJUSTMENT: WalletBucket.EARNED,
    LedgerEntryType.REFUND: WalletBucket.REDEEMED,
}

DEBIT_BUCKETS: dict[LedgerEntryType, WalletBucket] = {
    LedgerEntryType.DEBIT: WalletBucket.REDEEMED,
    LedgerEntryType.EXPIRY: WalletBucket.EXPIRED,
    LedgerEntryType.ADJUSTMENT: WalletBucket.EARNED,
}


@dataclass(slots=True)
class LedgerResult:
    """The appended entry with the wallet on either side of it."""

    entry: PointsLedgerEntry
    wallet_before: WalletSummary
    wallet_after: WalletSummary

    @property
    def account_id(self) -> UUID:
        return self.entry.account_id

    @property
    def points(self) -> int:
        return int(self.entry.points)


def _validate_points(points: object) -> int:
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidAmountError("Points must be a positive whole number", points=points)
    return points


class PointsLedger:
    """Session-scoped credit/debit primitives.

    Callers own the transaction and must hold the account lock from
    :mod:`pumprewards_api.services.points.locks` until it commits; the
    public, self-committing entry point is ``PointsService``.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        config_provider: ConfigProvider,
        observability: PointsObservabilityStore | None = None,
    ) -> None:
        self._session = session
        self._config_provider = config_provider
        self._wallets = WalletStore(session)
        self._observability = observability or get_points_store()

    @property
    def wallets(self) -> WalletStore:
        return self._wallets

    async def credit(
        self,
        account_id: UUID,
        points: int,
        *,
        entry_type: LedgerEntryType = LedgerEntryType.CREDIT,
        reason: str | None = None,
        transaction_id: UUID | None = None,
        redemption_id: UUID | None = None,
        created_by: UUID | None = None,
        restores: PointsLedgerEntry | None = None,
        now: datetime | None = None,
    ) -> LedgerResult:
        """Append a credit entry.

        A ``refund`` may pass the debit it reverses as ``restores``; the
        refunded points then rejoin the lots that debit drew from and keep
        their original expiry.
        """

        points = _validate_points(points)
        bucket = CREDIT_BUCKETS.get(entry_type)
        if bucket is None:
            raise InvalidInputError(f"{entry_type.value} is not a credit entry type")
        if restores is not None and entry_type != LedgerEntryType.REFUND:
            raise InvalidInputError("Only refunds restore a debit's credit lots")

        timestamp = now or utcnow()
        expiry_date: datetime | None = None
        if entry_type == LedgerEntryType.CREDIT:
            config = await self._config_provider.get_config()
            expiry_date = add_months(timestamp, config.expiry_months)

        account = await self._wallets.load_for_update(account_id)
        before = WalletSummary.from_account(account)
        after = self._wallets.apply_delta(account, points, bucket)
        if restores is not None:
            await self._restore_lots(restores, points)

        entry = PointsLedgerEntry(
            account_id=account.id,
            entry_type=entry_type,
            points=points,
            balance_after=after.available_points,
            expiry_date=expiry_date,
            consumed_points=0,
            transaction_id=transaction_id,
            redemption_id=redemption_id,
            reason=reason or f"Points {entry_type.value}",
            created_by=created_by,
            created_at=timestamp,
        )
        self._session.add(entry)
        await self._flush()

        self._observability.record_ledger_entry(entry_type.value, points)
        logger.info(
            "Credited points",
            account_id=str(account.id),
            entry_type=entry_type.value,
            points=points,
            balance_after=after.available_points,
        )
        return LedgerResult(entry=entry, wallet_before=before, wallet_after=after)

    async def debit(
        self,
        account_id: UUID,
        points: int,
        *,
        entry_type: LedgerEntryType = LedgerEntryType.DEBIT,
        reason: str | None = None,
        transaction_id: UUID | None = None,
        redemption_id: UUID | None = None,
        created_by: UUID | None = None,
        expiring_lot: PointsLedgerEntry | None = None,
        now: datetime | None = None,
    ) -> LedgerResult:
        points = _validate_points(points)
        bucket = DEBIT_BUCKETS.get(entry_type)
        if bucket is None:
            raise InvalidInputError(f"{entry_type.value} is not a debit entry type")
        if expiring_lot is not None and entry_type != LedgerEntryType.EXPIRY:
            raise InvalidInputError("Only expiry debits retire a specific credit lot")

        timestamp = now or utcnow()
        account = await self._wallets.load_for_update(account_id)
        before = WalletSummary.from_account(account)
        if before.available_points < points:
            self._observability.record_insufficient_balance()
            logger.info(
                "Rejected debit for insufficient balance",
                account_id=str(account.id),
                available=before.available_points,
                requested=points,
            )
            raise InsufficientBalanceError(available=before.available_points, requested=points)

        after = self._wallets.apply_delta(account, -points, bucket)
        allocations: list[dict[str, object]] = []
        if expiring_lot is not None:
            expiring_lot.consumed_points = int(expiring_lot.consumed_points or 0) + points
            expiring_lot.expired_at = timestamp
        else:
            allocations = await self._consume_lots(account.id, points)

        entry = PointsLedgerEntry(
            account_id=account.id,
            entry_type=entry_type,
            points=-points,
            balance_after=after.available_points,
            expiry_date=None,
            consumed_points=0,
            lot_allocations=allocations or None,
            transaction_id=transaction_id,
            redemption_id=redemption_id,
            reason=reason or f"Points {entry_type.value}",
            created_by=created_by,
            created_at=timestamp,
        )
        self._session.add(entry)
        await self._flush()

        self._observability.record_ledger_entry(entry_type.value, points)
        logger.info(
            "Debited points",
            account_id=str(account.id),
            entry_type=entry_type.value,
            points=points,
            balance_after=after.available_points,
        )
        return LedgerResult(entry=entry, wallet_before=before, wallet_after=after)

    async def expiring_lots(self, account_id: UUID, *, before: datetime) -> list[PointsLedgerEntry]:
        """Credit lots due by ``before`` with points left, oldest expiry first."""

        stmt = (
            select(PointsLedgerEntry)
            .where(
                PointsLedgerEntry.account_id == account_id,
                PointsLedgerEntry.entry_type == LedgerEntryType.CREDIT,
                PointsLedgerEntry.expiry_date.is_not(None),
                PointsLedgerEntry.expiry_date <= before,
                PointsLedgerEntry.expired_at.is_(None),
                PointsLedgerEntry.consumed_points < PointsLedgerEntry.points,
            )
            .order_by(PointsLedgerEntry.expiry_date.asc(), PointsLedgerEntry.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_entries(
        self,
        account_id: UUID,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[PointsLedgerEntry], int]:
        page = max(page, 1)
        limit = max(min(limit, 100), 1)
        total = await self._session.scalar(
            select(func.count()).select_from(PointsLedgerEntry).where(PointsLedgerEntry.account_id == account_id)
        )
        stmt = (
            select(PointsLedgerEntry)
            .where(PointsLedgerEntry.account_id == account_id)
            .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all()), int(total or 0)

    async def sum_points(self, account_id: UUID) -> int:
        total = await self._session.scalar(
            select(func.coalesce(func.sum(PointsLedgerEntry.points), 0)).where(
                PointsLedgerEntry.account_id == account_id
            )
        )
        return int(total or 0)

    async def _consume_lots(self, account_id: UUID, amount: int) -> list[dict[str, object]]:
        """Draw spent points from the oldest-expiring credit lots first."""

        remaining = amount
        allocations: list[dict[str, object]] = []
        stmt = (
            select(PointsLedgerEntry)
            .where(
                PointsLedgerEntry.account_id == account_id,
                PointsLedgerEntry.entry_type == LedgerEntryType.CREDIT,
                PointsLedgerEntry.expired_at.is_(None),
                PointsLedgerEntry.consumed_points < PointsLedgerEntry.points,
            )
            .order_by(PointsLedgerEntry.expiry_date.asc(), PointsLedgerEntry.created_at.asc())
        )
        result = await self._session.execute(stmt)
        for lot in result.scalars().all():
            if remaining <= 0:
                break
            take = min(lot.remaining_points, remaining)
            lot.consumed_points = int(lot.consumed_points or 0) + take
            allocations.append({"lot_id": str(lot.id), "points": take})
            remaining -= take
        return allocations

    async def _restore_lots(self, debit: PointsLedgerEntry, amount: int) -> None:
        """Give up to ``amount`` points back to the lots ``debit`` consumed.

        A lot the sweep already retired is reopened; its expiry date has
        passed, so the next sweep expires the restored points.
        """

        allocations = list(debit.lot_allocations or [])
        if not allocations:
            return
        lot_ids = [UUID(str(item["lot_id"])) for item in allocations]
        stmt = select(PointsLedgerEntry).where(
            PointsLedgerEntry.id.in_(lot_ids),
            PointsLedgerEntry.account_id == debit.account_id,
        )
        lots = {lot.id: lot for lot in (await self._session.execute(stmt)).scalars().all()}

        remaining = amount
        kept: list[dict[str, object]] = []
        for item in reversed(allocations):
            drawn = int(item["points"])
            lot = lots.get(UUID(str(item["lot_id"])))
            give_back = min(drawn, remaining, int(lot.consumed_points or 0)) if lot is not None else 0
            if give_back > 0:
                lot.consumed_points = int(lot.consumed_points or 0) - give_back
                lot.expired_at = None
                remaining -= give_back
            if drawn > give_back:
                kept.append({"lot_id": item["lot_id"], "points": drawn - give_back})
        debit.lot_allocations = list(reversed(kept)) or None

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError("Wallet was updated concurrently") from exc


__all__ = ["CREDIT_BUCKETS", "DEBIT_BUCKETS", "LedgerResult", "PointsLedger"]
