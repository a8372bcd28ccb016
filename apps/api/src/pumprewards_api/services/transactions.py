"""Record pump purchases and credit the points they earn."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.core.timeutils import utcnow
from pumprewards_api.models.campaign import Campaign
from pumprewards_api.models.transaction import (
    PaymentMode,
    PumpTransaction,
    TransactionCategory,
    TransactionStatus,
)
from pumprewards_api.services.campaigns.matcher import CampaignService
from pumprewards_api.services.identity import IdentityResolver
from pumprewards_api.services.points.calculation import apply_campaign, calculate_points
from pumprewards_api.services.points.errors import DuplicateBillError, InvalidInputError
from pumprewards_api.services.points.ledger import LedgerResult
from pumprewards_api.services.points.service import PointsService


@dataclass(slots=True)
class TransactionResult:
    transaction: PumpTransaction
    base_points: int
    points_earned: int
    campaign: Campaign | None = None
    ledger: LedgerResult | None = None


class TransactionService:
    """Purchase entry point: campaign, calculation and credit in one unit."""

    def __init__(self, points: PointsService) -> None:
        self._points = points

    async def record_transaction(
        self,
        *,
        pump_id: str,
        identifier: str | UUID,
        category: TransactionCategory | str,
        amount: Decimal | float | int,
        bill_number: str,
        payment_mode: PaymentMode | str,
        liters: Decimal | float | int | None = None,
        operator_id: UUID | None = None,
    ) -> TransactionResult:
        category = TransactionCategory(category)
        payment_mode = PaymentMode(payment_mode)
        bill = (bill_number or "").strip()
        if not bill:
            raise InvalidInputError("Bill number is required")
        spend = Decimal(str(amount))
        if spend < 0:
            raise InvalidInputError("Amount must not be negative")
        volume = Decimal(str(liters)) if liters is not None else None
        if category == TransactionCategory.FUEL and (volume is None or volume <= 0):
            raise InvalidInputError("Liters is required for Fuel transactions")

        async with self._points.session_factory() as session:
            await self._ensure_unique_bill(session, pump_id, bill)
            account = await IdentityResolver(session).resolve(identifier)
            account_id = account.id

        async def _work(session: AsyncSession) -> TransactionResult:
            await self._ensure_unique_bill(session, pump_id, bill)
            config = await self._points.config_provider.get_config()
            campaign = await CampaignService(session).select_campaign(
                pump_id,
                category,
                spend,
                account_id=account_id,
            )
            base_points = calculate_points(category, spend, volume, rates=config.rates)
            points_earned = apply_campaign(base_points, campaign)

            transaction = PumpTransaction(
                pump_id=pump_id,
                account_id=account_id,
                operator_id=operator_id,
                amount=spend,
                liters=volume if category == TransactionCategory.FUEL else None,
                category=category,
                bill_number=bill,
                payment_mode=payment_mode,
                points_earned=points_earned,
                campaign_id=campaign.id if campaign else None,
                status=TransactionStatus.COMPLETED,
                created_at=utcnow(),
            )
            session.add(transaction)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise DuplicateBillError(
                    "Bill number already exists for this pump",
                    pump_id=pump_id,
                    bill_number=bill,
                ) from exc

            ledger_result: LedgerResult | None = None
            if points_earned > 0:
                ledger_result = await self._points.ledger(session).credit(
                    account_id,
                    points_earned,
                    reason=f"Points earned from {category.value} transaction",
                    transaction_id=transaction.id,
                    created_by=operator_id,
                )
            return TransactionResult(
                transaction=transaction,
                base_points=base_points,
                points_earned=points_earned,
                campaign=campaign,
                ledger=ledger_result,
            )

        result = await self._points.run_for_account(account_id, _work)
        logger.info(
            "Recorded pump transaction",
            transaction_id=str(result.transaction.id),
            account_id=str(account_id),
            pump_id=pump_id,
            category=category.value,
            points=result.points_earned,
            campaign_id=str(result.campaign.id) if result.campaign else None,
        )
        return result

    @staticmethod
    async def _ensure_unique_bill(session: AsyncSession, pump_id: str, bill_number: str) -> None:
        stmt = select(PumpTransaction.id).where(
            PumpTransaction.pump_id == pump_id,
            PumpTransaction.bill_number == bill_number,
        )
        if (await session.execute(stmt)).first() is not None:
            raise DuplicateBillError(
                "Bill number already exists for this pump",
                pump_id=pump_id,
                bill_number=bill_number,
            )


__all__ = ["TransactionResult", "TransactionService"]
