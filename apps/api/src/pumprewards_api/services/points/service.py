"""Self-committing points API wrapping the ledger in lock and transaction."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from pumprewards_api.core.settings import settings
from pumprewards_api.models.points_ledger import LedgerEntryType, PointsLedgerEntry
from pumprewards_api.observability.points import PointsObservabilityStore, get_points_store
from pumprewards_api.services.points.config import ConfigProvider, SystemConfigProvider
from pumprewards_api.services.points.errors import ConcurrencyConflictError
from pumprewards_api.services.points.ledger import LedgerResult, PointsLedger
from pumprewards_api.services.points.locks import AccountLockRegistry, get_account_locks
from pumprewards_api.services.points.wallet import WalletStore, WalletSummary

SessionFactory = Callable[[], AsyncSession]
T = TypeVar("T")


@dataclass(slots=True)
class WalletPage:
    summary: WalletSummary
    entries: Sequence[PointsLedgerEntry]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    account_id: UUID
    wallet: WalletSummary
    ledger_total: int

    @property
    def balanced(self) -> bool:
        return self.ledger_total == self.wallet.available_points and self.wallet.is_consistent

    def as_dict(self) -> dict[str, Any]:
        return {
            "account_id": str(self.account_id),
            "wallet": self.wallet.as_dict(),
            "ledger_total": self.ledger_total,
            "balanced": self.balanced,
        }


class PointsService:
    """Public entry point for balance-changing work.

    Each unit of work runs as: account lock, new session, transaction, commit,
    release. A :class:`ConcurrencyConflictError` reruns the whole unit a
    bounded number of times with exponential backoff.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        config_provider: ConfigProvider | None = None,
        locks: AccountLockRegistry | None = None,
        observability: PointsObservabilityStore | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_provider = config_provider or SystemConfigProvider(session_factory)
        self._locks = locks or get_account_locks()
        self._observability = observability or get_points_store()
        self._max_attempts = max(max_attempts or settings.points_conflict_max_attempts, 1)
        self._backoff_seconds = (
            settings.points_conflict_backoff_seconds if backoff_seconds is None else backoff_seconds
        )

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory

    @property
    def config_provider(self) -> ConfigProvider:
        return self._config_provider

    @property
    def observability(self) -> PointsObservabilityStore:
        return self._observability

    def ledger(self, session: AsyncSession) -> PointsLedger:
        return PointsLedger(
            session,
            config_provider=self._config_provider,
            observability=self._observability,
        )

    async def run_for_account(
        self,
        account_id: UUID,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run ``work`` in its own committed transaction under the account lock."""

        attempt = 1
        while True:
            try:
                async with self._locks.hold(account_id):
                    async with self._session_factory() as session:
                        try:
                            async with session.begin():
                                result = await work(session)
                        except StaleDataError as exc:
                            raise ConcurrencyConflictError(
                                "Wallet was updated concurrently",
                                account_id=str(account_id),
                            ) from exc
                return result
            except ConcurrencyConflictError:
                if attempt >= self._max_attempts:
                    self._observability.record_conflict(retried=False)
                    logger.warning(
                        "Giving up after concurrent wallet updates",
                        account_id=str(account_id),
                        attempts=attempt,
                    )
                    raise
                self._observability.record_conflict(retried=True)
                delay = self._backoff_seconds * (2 ** (attempt - 1))
                logger.info(
                    "Retrying wallet update after conflict",
                    account_id=str(account_id),
                    attempt=attempt,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

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
    ) -> LedgerResult:
        async def _work(session: AsyncSession) -> LedgerResult:
            return await self.ledger(session).credit(
                account_id,
                points,
                entry_type=entry_type,
                reason=reason,
                transaction_id=transaction_id,
                redemption_id=redemption_id,
                created_by=created_by,
            )

        return await self.run_for_account(account_id, _work)

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
    ) -> LedgerResult:
        async def _work(session: AsyncSession) -> LedgerResult:
            return await self.ledger(session).debit(
                account_id,
                points,
                entry_type=entry_type,
                reason=reason,
                transaction_id=transaction_id,
                redemption_id=redemption_id,
                created_by=created_by,
            )

        return await self.run_for_account(account_id, _work)

    async def get_balance(self, account_id: UUID) -> WalletSummary:
        async with self._session_factory() as session:
            return await WalletStore(session).get_balance(account_id)

    async def get_wallet(self, account_id: UUID, *, page: int = 1, limit: int = 20) -> WalletPage:
        async with self._session_factory() as session:
            summary = await WalletStore(session).get_balance(account_id)
            entries, total = await self.ledger(session).list_entries(account_id, page=page, limit=limit)
        return WalletPage(
            summary=summary,
            entries=entries,
            page=max(page, 1),
            limit=max(min(limit, 100), 1),
            total=total,
        )

    async def reconcile(self, account_id: UUID) -> ReconciliationReport:
        """Compare the wallet with the sum of its ledger entries."""

        async with self._session_factory() as session:
            wallet = await WalletStore(session).get_balance(account_id)
            ledger_total = await self.ledger(session).sum_points(account_id)
        report = ReconciliationReport(account_id=account_id, wallet=wallet, ledger_total=ledger_total)
        if not report.balanced:
            logger.bind(report=report.as_dict()).warning("Wallet does not reconcile with ledger")
        return report


__all__ = ["PointsService", "ReconciliationReport", "SessionFactory", "WalletPage"]
