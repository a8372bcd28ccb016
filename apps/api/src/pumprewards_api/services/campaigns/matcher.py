"""Campaign lookup and selection for incoming transactions."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.core.timeutils import ensure_aware, utcnow
from pumprewards_api.models.campaign import Campaign, CampaignStatus, CampaignType
from pumprewards_api.models.transaction import PumpTransaction, TransactionCategory
from pumprewards_api.services.points.errors import CampaignNotFoundError, InvalidInputError

_TYPE_FIELDS: dict[CampaignType, str] = {
    CampaignType.MULTIPLIER: "multiplier",
    CampaignType.BONUS_POINTS: "bonus_points",
    CampaignType.BONUS_PERCENTAGE: "bonus_percentage",
}


class CampaignService:
    """Create campaigns and pick the one that applies to a purchase.

    At most one campaign applies per transaction. Candidates are ordered by
    ``created_at`` then ``id`` and the first eligible one wins.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_campaign(
        self,
        *,
        name: str,
        campaign_type: CampaignType | str,
        start_date: datetime,
        end_date: datetime,
        multiplier: Decimal | float | None = None,
        bonus_points: int | None = None,
        bonus_percentage: Decimal | float | None = None,
        status: CampaignStatus = CampaignStatus.DRAFT,
        min_amount: Decimal | float | None = None,
        categories: Iterable[TransactionCategory | str] = (),
        frequency_limit: int | None = None,
        pump_ids: Iterable[str] = (),
        created_by: UUID | None = None,
    ) -> Campaign:
        campaign_type = CampaignType(campaign_type)
        start = ensure_aware(start_date)
        end = ensure_aware(end_date)
        if start >= end:
            raise InvalidInputError("End date must be after start date")

        values = {
            "multiplier": multiplier,
            "bonus_points": bonus_points,
            "bonus_percentage": bonus_percentage,
        }
        required = _TYPE_FIELDS[campaign_type]
        if values[required] is None or Decimal(str(values[required])) <= 0:
            raise InvalidInputError(f"{required} is required and must be positive")
        extras = [name_ for name_, value in values.items() if name_ != required and value is not None]
        if extras:
            raise InvalidInputError(f"{campaign_type.value} campaigns must not set {', '.join(sorted(extras))}")
        if min_amount is not None and Decimal(str(min_amount)) < 0:
            raise InvalidInputError("min_amount must be non-negative")
        if frequency_limit is not None and frequency_limit < 1:
            raise InvalidInputError("frequency_limit must be at least 1")

        campaign = Campaign(
            name=name,
            campaign_type=campaign_type,
            multiplier=Decimal(str(multiplier)) if multiplier is not None else None,
            bonus_points=bonus_points,
            bonus_percentage=Decimal(str(bonus_percentage)) if bonus_percentage is not None else None,
            start_date=start,
            end_date=end,
            status=status,
            min_amount=Decimal(str(min_amount)) if min_amount is not None else None,
            categories=[TransactionCategory(item).value for item in categories],
            frequency_limit=frequency_limit,
            pump_ids=[str(item) for item in pump_ids],
            created_by=created_by,
            created_at=utcnow(),
        )
        self._session.add(campaign)
        await self._session.flush()
        logger.info("Created campaign", campaign_id=str(campaign.id), campaign_type=campaign_type.value)
        return campaign

    async def set_status(self, campaign_id: UUID, status: CampaignStatus) -> Campaign:
        campaign = await self._session.get(Campaign, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError("Campaign not found", campaign_id=str(campaign_id))
        campaign.status = status
        await self._session.flush()
        logger.info("Updated campaign status", campaign_id=str(campaign_id), status=status.value)
        return campaign

    async def find_applicable(
        self,
        pump_id: str | None,
        category: TransactionCategory | str | None,
        amount: Decimal | float | None,
        *,
        account_id: UUID | None = None,
        now: datetime | None = None,
    ) -> list[Campaign]:
        """Active, in-window campaigns whose scope and conditions match."""

        moment = ensure_aware(now or utcnow())
        category_value = TransactionCategory(category).value if category else None
        spend = Decimal(str(amount)) if amount is not None else None

        stmt = (
            select(Campaign)
            .where(
                Campaign.status == CampaignStatus.ACTIVE,
                Campaign.start_date <= moment,
                Campaign.end_date >= moment,
            )
            .order_by(Campaign.created_at.asc(), Campaign.id.asc())
        )
        campaigns: Sequence[Campaign] = (await self._session.execute(stmt)).scalars().all()

        matches: list[Campaign] = []
        for campaign in campaigns:
            pumps = campaign.pump_ids or []
            if pump_id and pumps and str(pump_id) not in pumps:
                continue
            if campaign.min_amount is not None and spend is not None and spend < Decimal(campaign.min_amount):
                continue
            categories = campaign.categories or []
            if category_value and categories and category_value not in categories:
                continue
            matches.append(campaign)

        if account_id is not None:
            matches = await self._within_frequency_limit(matches, account_id)
        return matches

    async def select_campaign(
        self,
        pump_id: str | None,
        category: TransactionCategory | str | None,
        amount: Decimal | float | None,
        *,
        account_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Campaign | None:
        matches = await self.find_applicable(pump_id, category, amount, account_id=account_id, now=now)
        return matches[0] if matches else None

    async def _within_frequency_limit(self, campaigns: list[Campaign], account_id: UUID) -> list[Campaign]:
        limited = [campaign.id for campaign in campaigns if campaign.frequency_limit]
        if not limited:
            return campaigns

        stmt = (
            select(PumpTransaction.campaign_id, func.count())
            .where(
                PumpTransaction.account_id == account_id,
                PumpTransaction.campaign_id.in_(limited),
            )
            .group_by(PumpTransaction.campaign_id)
        )
        usage = {campaign_id: int(count) for campaign_id, count in (await self._session.execute(stmt)).all()}
        return [
            campaign
            for campaign in campaigns
            if not campaign.frequency_limit or usage.get(campaign.id, 0) < campaign.frequency_limit
        ]


__all__ = ["CampaignService"]
