"""Pure points arithmetic for transactions and campaigns."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import TYPE_CHECKING

from pumprewards_api.models.campaign import CampaignType
from pumprewards_api.models.transaction import TransactionCategory
from pumprewards_api.services.points.config import PointsRates
from pumprewards_api.services.points.errors import InvalidInputError

if TYPE_CHECKING:
    from pumprewards_api.models.campaign import Campaign

_HUNDRED = Decimal("100")


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _to_decimal(value: Decimal | float | int | str | None) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_points(
    category: TransactionCategory | str,
    amount: Decimal | float | int | None,
    liters: Decimal | float | int | None = None,
    multiplier: Decimal | float | int = 1,
    *,
    rates: PointsRates,
) -> int:
    """Base points for a purchase, scaled by ``multiplier``.

    Fuel earns per litre and yields 0 when no litres are given; every other
    category earns per ₹100 of spend. Each step floors.
    """

    category = TransactionCategory(category)
    if category == TransactionCategory.FUEL:
        volume = _to_decimal(liters)
        if volume <= 0:
            return 0
        base_points = _floor(volume * rates.fuel_per_liter)
    else:
        spend = _to_decimal(amount)
        if spend < 0:
            raise InvalidInputError("Amount must not be negative")
        base_points = _floor((spend / _HUNDRED) * rates.per_100(category))

    return _floor(Decimal(base_points) * _to_decimal(multiplier))


def apply_campaign(base_points: int, campaign: "Campaign | None") -> int:
    """Final points after one campaign; campaigns never stack."""

    if campaign is None:
        return base_points

    campaign_type = CampaignType(campaign.campaign_type)
    if campaign_type == CampaignType.MULTIPLIER:
        return _floor(Decimal(base_points) * _to_decimal(campaign.multiplier))
    if campaign_type == CampaignType.BONUS_POINTS:
        return base_points + int(campaign.bonus_points or 0)
    bonus = _floor(Decimal(base_points) * _to_decimal(campaign.bonus_percentage) / _HUNDRED)
    return base_points + bonus


__all__ = ["apply_campaign", "calculate_points"]
