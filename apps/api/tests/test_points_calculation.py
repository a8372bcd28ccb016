from decimal import Decimal

import pytest

from pumprewards_api.models.campaign import Campaign, CampaignType
from pumprewards_api.models.transaction import TransactionCategory
from pumprewards_api.services.points.calculation import apply_campaign, calculate_points
from pumprewards_api.services.points.config import PointsRates
from pumprewards_api.services.points.errors import InvalidInputError

RATES = PointsRates(
    fuel_per_liter=Decimal("1"),
    lubricant_per_100=Decimal("5"),
    store_per_100=Decimal("5"),
    service_per_100=Decimal("5"),
)


def _campaign(campaign_type: CampaignType, **fields) -> Campaign:
    return Campaign(name="promo", campaign_type=campaign_type, **fields)


def test_fuel_earns_per_litre() -> None:
    assert calculate_points(TransactionCategory.FUEL, 2000, 20, rates=RATES) == 20


def test_lubricant_floors_fractional_points() -> None:
    assert calculate_points(TransactionCategory.LUBRICANT, 250, rates=RATES) == 12


def test_fuel_with_multiplier_campaign() -> None:
    base = calculate_points(TransactionCategory.FUEL, 2000, 20, rates=RATES)
    campaign = _campaign(CampaignType.MULTIPLIER, multiplier=Decimal("2"))

    assert apply_campaign(base, campaign) == 40


def test_store_with_bonus_percentage_campaign() -> None:
    base = calculate_points(TransactionCategory.STORE, 1000, rates=RATES)
    campaign = _campaign(CampaignType.BONUS_PERCENTAGE, bonus_percentage=Decimal("10"))

    assert base == 50
    assert apply_campaign(base, campaign) == 55


def test_bonus_points_campaign_adds_flat_amount() -> None:
    campaign = _campaign(CampaignType.BONUS_POINTS, bonus_points=25)

    assert apply_campaign(12, campaign) == 37


def test_no_campaign_keeps_base_points() -> None:
    assert apply_campaign(17, None) == 17


def test_fuel_without_litres_earns_nothing() -> None:
    assert calculate_points("Fuel", 1500, None, rates=RATES) == 0
    assert calculate_points("Fuel", 1500, 0, rates=RATES) == 0


def test_fuel_floors_before_applying_multiplier() -> None:
    rates = PointsRates(fuel_per_liter=Decimal("1.5"))

    # floor(7.5 * 1.5) = 11, then floor(11 * 1.5) = 16
    assert calculate_points(TransactionCategory.FUEL, 0, Decimal("7.5"), Decimal("1.5"), rates=rates) == 16


def test_rates_follow_the_supplied_configuration() -> None:
    rates = PointsRates(service_per_100=Decimal("8"))

    assert calculate_points(TransactionCategory.SERVICE, 399, rates=rates) == 31


def test_negative_amount_is_rejected() -> None:
    with pytest.raises(InvalidInputError):
        calculate_points(TransactionCategory.STORE, -10, rates=RATES)


def test_multiplier_campaign_floors_result() -> None:
    campaign = _campaign(CampaignType.MULTIPLIER, multiplier=Decimal("1.25"))

    assert apply_campaign(13, campaign) == 16
