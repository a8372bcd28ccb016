"""Redemption lifecycle: creation, approval, rejection, verification and use."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.core.settings import settings
from pumprewards_api.core.timeutils import ensure_aware, utcnow
from pumprewards_api.models.points_ledger import LedgerEntryType, PointsLedgerEntry
from pumprewards_api.models.redemption import Redemption, RedemptionStatus
from pumprewards_api.models.reward import Reward, RewardAvailability, RewardStatus
from pumprewards_api.services.identity import IdentityResolver
from pumprewards_api.services.notifications import (
    AccountNotification,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    notify_best_effort,
)
from pumprewards_api.services.points.errors import (
    AlreadyUsedError,
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidInputError,
    InvalidStateError,
    RedemptionExpiredError,
    RedemptionNotFoundError,
    RewardNotFoundError,
    RewardUnavailableError,
)
from pumprewards_api.services.points.ledger import LedgerResult
from pumprewards_api.services.points.service import PointsService
from pumprewards_api.services.points.wallet import WalletSummary
from pumprewards_api.services.redemptions.codes import code_exists_in, generate_redemption_code


@dataclass(slots=True)
class RedemptionResult:
    """A redemption after a transition plus the ledger movement it caused."""

    redemption: Redemption
    wallet: WalletSummary | None = None
    ledger: LedgerResult | None = None


class RedemptionService:
    """Drive redemptions through their states with matching ledger effects.

    Catalog redemptions debit at creation and refund on reject, cancel or
    lazy expiry while still pending. At-pump redemptions debit on approval.
    Every transition re-reads the redemption under its account lock, so a
    retried approve or reject never moves points twice.
    """

    _ALLOWED_TRANSITIONS: dict[RedemptionStatus, set[RedemptionStatus]] = {
        RedemptionStatus.PENDING: {
            RedemptionStatus.APPROVED,
            RedemptionStatus.REJECTED,
            RedemptionStatus.CANCELLED,
            RedemptionStatus.EXPIRED,
        },
        RedemptionStatus.APPROVED: {
            RedemptionStatus.USED,
            RedemptionStatus.EXPIRED,
        },
        RedemptionStatus.REJECTED: set(),
        RedemptionStatus.USED: set(),
        RedemptionStatus.EXPIRED: set(),
        RedemptionStatus.CANCELLED: set(),
    }

    def __init__(
        self,
        points: PointsService,
        *,
        notifier: NotificationDispatcher | None = None,
        code_ttl_days: int | None = None,
    ) -> None:
        self._points = points
        self._notifier = notifier or LoggingNotificationDispatcher()
        self._code_ttl = timedelta(days=code_ttl_days or settings.redemption_code_ttl_days)

    async def create_catalog_redemption(
        self,
        account_id: UUID,
        reward_id: UUID,
        *,
        requested_by: UUID | None = None,
        now: datetime | None = None,
    ) -> RedemptionResult:
        moment = ensure_aware(now or utcnow())

        async def _work(session: AsyncSession) -> RedemptionResult:
            reward = await session.get(Reward, reward_id)
            if reward is None:
                raise RewardNotFoundError("Reward not found", reward_id=str(reward_id))
            self._ensure_reward_available(reward, moment)
            await self._reserve_stock(session, reward)

            redemption = Redemption(
                account_id=account_id,
                reward_id=reward.id,
                points_used=int(reward.points_required),
                points_debited=True,
                redemption_code=await generate_redemption_code(code_exists_in(session)),
                status=RedemptionStatus.PENDING,
                requested_by=requested_by or account_id,
                expiry_date=moment + self._code_ttl,
            )
            await self._insert(session, redemption)

            ledger = await self._points.ledger(session).debit(
                account_id,
                redemption.points_used,
                entry_type=LedgerEntryType.DEBIT,
                reason=f"Redeemed reward: {reward.name}",
                redemption_id=redemption.id,
                created_by=requested_by,
                now=moment,
            )
            return RedemptionResult(redemption=redemption, wallet=ledger.wallet_after, ledger=ledger)

        result = await self._points.run_for_account(account_id, _work)
        self._record(result.redemption, "Created catalog redemption")
        return result

    async def create_at_pump_redemption(
        self,
        identifier: str | UUID,
        points: int,
        *,
        operator_id: UUID | None,
        pump_id: str,
        now: datetime | None = None,
    ) -> RedemptionResult:
        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            raise InvalidAmountError("Points must be a positive whole number", points=points)
        moment = ensure_aware(now or utcnow())

        async with self._points.session_factory() as session:
            account = await IdentityResolver(session).resolve(identifier)
            account_id = account.id

        async def _work(session: AsyncSession) -> RedemptionResult:
            ledger = self._points.ledger(session)
            wallet = WalletSummary.from_account(await ledger.wallets.load_for_update(account_id))
            if wallet.available_points < points:
                self._points.observability.record_insufficient_balance()
                raise InsufficientBalanceError(available=wallet.available_points, requested=points)

            redemption = Redemption(
                account_id=account_id,
                reward_id=None,
                points_used=points,
                points_debited=False,
                redemption_code=await generate_redemption_code(code_exists_in(session)),
                status=RedemptionStatus.PENDING,
                requested_by=operator_id,
                pump_id=pump_id,
                expiry_date=moment + self._code_ttl,
            )
            await self._insert(session, redemption)
            return RedemptionResult(redemption=redemption, wallet=wallet)

        result = await self._points.run_for_account(account_id, _work)
        self._record(result.redemption, "Created at-pump redemption", pump_id=pump_id)
        return result

    async def approve(
        self,
        redemption_id: UUID,
        approver_id: UUID | None,
        *,
        now: datetime | None = None,
    ) -> RedemptionResult:
        """Approve a pending redemption, debiting at-pump points exactly once."""

        moment = ensure_aware(now or utcnow())
        account_id = await self._account_for(redemption_id)

        async def _work(session: AsyncSession) -> RedemptionResult:
            redemption = await self._load_for_update(session, redemption_id)
            self._ensure_status(redemption, RedemptionStatus.PENDING, "approve")
            if moment > ensure_aware(redemption.expiry_date):
                await self._expire(session, redemption)
                return RedemptionResult(redemption=redemption)

            ledger_result: LedgerResult | None = None
            if not redemption.points_debited:
                ledger_result = await self._points.ledger(session).debit(
                    redemption.account_id,
                    redemption.points_used,
                    entry_type=LedgerEntryType.DEBIT,
                    reason=f"At-pump redemption at pump {redemption.pump_id}",
                    redemption_id=redemption.id,
                    created_by=approver_id,
                    now=moment,
                )
                redemption.points_debited = True

            self._transition(redemption, RedemptionStatus.APPROVED)
            redemption.approved_by = approver_id
            redemption.approved_at = moment
            await session.flush()
            wallet = ledger_result.wallet_after if ledger_result else None
            return RedemptionResult(redemption=redemption, wallet=wallet, ledger=ledger_result)

        result = await self._points.run_for_account(account_id, _work)
        if result.redemption.status == RedemptionStatus.EXPIRED:
            self._record(result.redemption, "Redemption expired", expired_at=moment.isoformat())
            raise RedemptionExpiredError("Redemption has expired", redemption_id=str(redemption_id))
        self._record(result.redemption, "Approved redemption")
        return result

    async def reject(
        self,
        redemption_id: UUID,
        actor_id: UUID | None,
        reason: str,
    ) -> RedemptionResult:
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInputError("A rejection reason is required")
        result = await self._close_pending(redemption_id, actor_id, RedemptionStatus.REJECTED, reason)
        await notify_best_effort(
            self._notifier,
            AccountNotification(
                account_id=result.redemption.account_id,
                title="Redemption Rejected",
                body=f"Your redemption {result.redemption.redemption_code} was rejected: {reason}",
                kind="redemption_rejected",
                metadata={"redemption_id": str(result.redemption.id)},
            ),
            observability=self._points.observability,
        )
        return result

    async def cancel(
        self,
        redemption_id: UUID,
        actor_id: UUID | None,
        reason: str | None = None,
    ) -> RedemptionResult:
        result = await self._close_pending(
            redemption_id,
            actor_id,
            RedemptionStatus.CANCELLED,
            (reason or "").strip() or "Cancelled",
        )
        await notify_best_effort(
            self._notifier,
            AccountNotification(
                account_id=result.redemption.account_id,
                title="Redemption Cancelled",
                body=f"Your redemption {result.redemption.redemption_code} was cancelled.",
                kind="redemption_cancelled",
                metadata={"redemption_id": str(result.redemption.id)},
            ),
            observability=self._points.observability,
        )
        return result

    async def verify_code(self, code: str, *, now: datetime | None = None) -> Redemption:
        """Return the approved redemption behind ``code`` or raise why not."""

        moment = ensure_aware(now or utcnow())
        redemption = await self._find_by_code(code)
        status = RedemptionStatus(redemption.status)
        if status == RedemptionStatus.USED:
            raise AlreadyUsedError("Redemption code already used", current_status=status.value)
        if status == RedemptionStatus.EXPIRED:
            raise RedemptionExpiredError("Redemption code has expired", code=code)
        if moment > ensure_aware(redemption.expiry_date) and not status.is_terminal:
            await self._expire_lazily(redemption.account_id, redemption.id, moment)
            raise RedemptionExpiredError("Redemption code has expired", code=code)
        if status != RedemptionStatus.APPROVED:
            raise InvalidStateError(f"Redemption code is {status.value}", current_status=status.value)
        return redemption

    async def use_code(self, code: str, pump_id: str, *, now: datetime | None = None) -> Redemption:
        moment = ensure_aware(now or utcnow())
        verified = await self.verify_code(code, now=moment)

        async def _work(session: AsyncSession) -> Redemption:
            redemption = await self._load_for_update(session, verified.id)
            if redemption.status == RedemptionStatus.USED:
                raise AlreadyUsedError("Redemption code already used", current_status=RedemptionStatus.USED.value)
            self._transition(redemption, RedemptionStatus.USED)
            redemption.used_at = moment
            redemption.used_at_pump = pump_id
            await session.flush()
            return redemption

        redemption = await self._points.run_for_account(verified.account_id, _work)
        self._record(redemption, "Redemption code used", pump_id=pump_id)
        return redemption

    async def get_redemption(self, redemption_id: UUID) -> Redemption:
        async with self._points.session_factory() as session:
            redemption = await session.get(Redemption, redemption_id)
        if redemption is None:
            raise RedemptionNotFoundError("Redemption not found", redemption_id=str(redemption_id))
        return redemption

    async def list_redemptions(
        self,
        *,
        account_id: UUID | None = None,
        status: RedemptionStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[Redemption], int]:
        page = max(page, 1)
        limit = max(min(limit, 100), 1)
        filters = []
        if account_id is not None:
            filters.append(Redemption.account_id == account_id)
        if status is not None:
            filters.append(Redemption.status == status)

        async with self._points.session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(Redemption).where(*filters))
            stmt = (
                select(Redemption)
                .where(*filters)
                .order_by(Redemption.created_at.desc(), Redemption.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            items = list((await session.execute(stmt)).scalars().all())
        return items, int(total or 0)

    async def _close_pending(
        self,
        redemption_id: UUID,
        actor_id: UUID | None,
        target: RedemptionStatus,
        reason: str,
    ) -> RedemptionResult:
        account_id = await self._account_for(redemption_id)

        async def _work(session: AsyncSession) -> RedemptionResult:
            redemption = await self._load_for_update(session, redemption_id)
            self._ensure_status(redemption, RedemptionStatus.PENDING, target.value)
            ledger_result = await self._release_points(session, redemption, actor_id, reason)
            self._transition(redemption, target)
            if target == RedemptionStatus.REJECTED:
                redemption.rejected_reason = reason
            else:
                redemption.cancelled_at = utcnow()
            await session.flush()
            wallet = ledger_result.wallet_after if ledger_result else None
            return RedemptionResult(redemption=redemption, wallet=wallet, ledger=ledger_result)

        result = await self._points.run_for_account(account_id, _work)
        self._record(result.redemption, f"Redemption {target.value}", reason=reason)
        return result

    async def _expire_lazily(self, account_id: UUID, redemption_id: UUID, moment: datetime) -> None:
        async def _work(session: AsyncSession) -> Redemption | None:
            redemption = await self._load_for_update(session, redemption_id)
            if RedemptionStatus(redemption.status).is_terminal:
                return None
            await self._expire(session, redemption)
            return redemption

        expired = await self._points.run_for_account(account_id, _work)
        if expired is not None:
            self._record(expired, "Redemption expired", expired_at=moment.isoformat())

    async def _expire(self, session: AsyncSession, redemption: Redemption) -> None:
        """Flip to expired; a pending redemption hands back what it holds."""

        if redemption.status == RedemptionStatus.PENDING:
            await self._release_points(session, redemption, None, "Redemption expired before approval")
        self._transition(redemption, RedemptionStatus.EXPIRED)
        await session.flush()

    async def _release_points(
        self,
        session: AsyncSession,
        redemption: Redemption,
        actor_id: UUID | None,
        reason: str,
    ) -> LedgerResult | None:
        ledger_result: LedgerResult | None = None
        if redemption.points_debited:
            debit = await self._debit_for(session, redemption)
            ledger_result = await self._points.ledger(session).credit(
                redemption.account_id,
                redemption.points_used,
                entry_type=LedgerEntryType.REFUND,
                reason=f"Redemption {redemption.redemption_code} refunded: {reason}",
                redemption_id=redemption.id,
                created_by=actor_id,
                restores=debit,
            )
            redemption.points_debited = False
        if redemption.reward_id is not None:
            await session.execute(
                update(Reward)
                .where(Reward.id == redemption.reward_id, Reward.redeemed_quantity > 0)
                .values(redeemed_quantity=Reward.redeemed_quantity - 1)
                .execution_options(synchronize_session=False)
            )
        return ledger_result

    @staticmethod
    async def _debit_for(session: AsyncSession, redemption: Redemption) -> PointsLedgerEntry | None:
        stmt = (
            select(PointsLedgerEntry)
            .where(
                PointsLedgerEntry.redemption_id == redemption.id,
                PointsLedgerEntry.entry_type == LedgerEntryType.DEBIT,
            )
            .order_by(PointsLedgerEntry.created_at.desc())
            .limit(1)
        )
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def _insert(session: AsyncSession, redemption: Redemption) -> None:
        """Persist a new redemption; a code taken by a concurrent writer reruns the unit."""

        session.add(redemption)
        try:
            await session.flush()
        except IntegrityError as exc:
            logger.warning("Redemption code collided on insert", code=redemption.redemption_code)
            raise ConcurrencyConflictError(
                "Redemption code was claimed concurrently",
                code=redemption.redemption_code,
            ) from exc

    async def _reserve_stock(self, session: AsyncSession, reward: Reward) -> None:
        stmt = update(Reward).where(Reward.id == reward.id)
        if reward.availability == RewardAvailability.LIMITED:
            stmt = stmt.where(Reward.redeemed_quantity < func.coalesce(Reward.total_quantity, 0))
        result = await session.execute(
            stmt.values(redeemed_quantity=Reward.redeemed_quantity + 1).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RewardUnavailableError("Reward is out of stock", reward_id=str(reward.id))

    @staticmethod
    def _ensure_reward_available(reward: Reward, moment: datetime) -> None:
        if reward.status != RewardStatus.ACTIVE:
            raise RewardUnavailableError("Reward is not active", reward_id=str(reward.id))
        if ensure_aware(reward.valid_from) > moment or ensure_aware(reward.valid_until) < moment:
            raise RewardUnavailableError("Reward is not valid at this time", reward_id=str(reward.id))

    async def _account_for(self, redemption_id: UUID) -> UUID:
        async with self._points.session_factory() as session:
            account_id = await session.scalar(select(Redemption.account_id).where(Redemption.id == redemption_id))
        if account_id is None:
            raise RedemptionNotFoundError("Redemption not found", redemption_id=str(redemption_id))
        return account_id

    async def _find_by_code(self, code: str) -> Redemption:
        value = (code or "").strip().upper()
        async with self._points.session_factory() as session:
            stmt = select(Redemption).where(Redemption.redemption_code == value)
            redemption = (await session.execute(stmt)).scalar_one_or_none()
        if redemption is None:
            raise RedemptionNotFoundError("Invalid redemption code", code=value)
        return redemption

    @staticmethod
    async def _load_for_update(session: AsyncSession, redemption_id: UUID) -> Redemption:
        stmt = (
            select(Redemption)
            .where(Redemption.id == redemption_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        redemption = (await session.execute(stmt)).scalar_one_or_none()
        if redemption is None:
            raise RedemptionNotFoundError("Redemption not found", redemption_id=str(redemption_id))
        return redemption

    @staticmethod
    def _ensure_status(redemption: Redemption, expected: RedemptionStatus, action: str) -> None:
        status = RedemptionStatus(redemption.status)
        if status != expected:
            raise InvalidStateError(
                f"Cannot {action} a redemption that is {status.value}",
                current_status=status.value,
            )

    def _transition(self, redemption: Redemption, target: RedemptionStatus) -> None:
        current = RedemptionStatus(redemption.status)
        if target not in self._ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Cannot transition redemption from {current.value} to {target.value}",
                current_status=current.value,
            )
        redemption.status = target

    def _record(self, redemption: Redemption, message: str, **extra: object) -> None:
        status = RedemptionStatus(redemption.status)
        self._points.observability.record_redemption_transition(status.value)
        logger.info(
            message,
            redemption_id=str(redemption.id),
            account_id=str(redemption.account_id),
            status=status.value,
            points=redemption.points_used,
            **extra,
        )


__all__ = ["RedemptionResult", "RedemptionService"]
