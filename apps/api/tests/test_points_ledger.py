import random
from datetime import timedelta

import pytest
from sqlalchemy import select

from pumprewards_api.core.timeutils import add_months, ensure_aware, utcnow
from pumprewards_api.models import LedgerEntryType, PointsLedgerEntry
from pumprewards_api.services.points.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidInputError,
)


async def _entries(session_factory, account_id):
    async with session_factory() as session:
        stmt = (
            select(PointsLedgerEntry)
            .where(PointsLedgerEntry.account_id == account_id)
            .order_by(PointsLedgerEntry.created_at)
        )
        return list((await session.execute(stmt)).scalars().all())


@pytest.mark.asyncio
async def test_credit_appends_entry_and_updates_wallet(points_service, make_account, session_factory) -> None:
    account = await make_account()

    result = await points_service.credit(account.id, 120, reason="Welcome bonus")

    assert result.wallet_before.available_points == 0
    assert result.wallet_after.available_points == 120
    assert result.wallet_after.total_earned == 120
    assert result.entry.points == 120
    assert result.entry.balance_after == 120
    assert result.entry.entry_type == LedgerEntryType.CREDIT

    expected_expiry = add_months(ensure_aware(result.entry.created_at), 12)
    assert ensure_aware(result.entry.expiry_date) == expected_expiry

    balance = await points_service.get_balance(account.id)
    assert balance.available_points == 120
    assert balance.is_consistent


@pytest.mark.asyncio
async def test_debit_records_negative_entry(points_service, make_account) -> None:
    account = await make_account()
    await points_service.credit(account.id, 500)

    result = await points_service.debit(account.id, 200, reason="Reward")

    assert result.entry.points == -200
    assert result.entry.balance_after == 300
    assert result.wallet_after.redeemed_points == 200
    assert result.wallet_after.available_points == 300


@pytest.mark.asyncio
@pytest.mark.parametrize("points", [0, -5, 2.5, True])
async def test_non_positive_or_fractional_points_are_rejected(points_service, make_account, points) -> None:
    account = await make_account()

    with pytest.raises(InvalidAmountError):
        await points_service.credit(account.id, points)
    with pytest.raises(InvalidAmountError):
        await points_service.debit(account.id, points)

    balance = await points_service.get_balance(account.id)
    assert balance.available_points == 0


@pytest.mark.asyncio
async def test_overdraft_is_rejected_without_side_effects(
    points_service, make_account, session_factory, observability
) -> None:
    account = await make_account()
    await points_service.credit(account.id, 100)

    with pytest.raises(InsufficientBalanceError) as excinfo:
        await points_service.debit(account.id, 101)

    assert excinfo.value.available == 100
    assert excinfo.value.requested == 101
    assert excinfo.value.as_payload() == {
        "success": False,
        "message": "Insufficient points balance",
        "code": "INSUFFICIENT_BALANCE",
    }
    assert len(await _entries(session_factory, account.id)) == 1
    assert (await points_service.get_balance(account.id)).available_points == 100
    assert observability.snapshot().ledger["insufficient_balance"] == 1


@pytest.mark.asyncio
async def test_unknown_account_raises_not_found(points_service) -> None:
    from uuid import uuid4

    with pytest.raises(AccountNotFoundError):
        await points_service.credit(uuid4(), 10)


@pytest.mark.asyncio
async def test_entry_type_must_match_direction(points_service, make_account) -> None:
    account = await make_account()
    await points_service.credit(account.id, 50)

    with pytest.raises(InvalidInputError):
        await points_service.credit(account.id, 10, entry_type=LedgerEntryType.DEBIT)
    with pytest.raises(InvalidInputError):
        await points_service.debit(account.id, 10, entry_type=LedgerEntryType.REFUND)


@pytest.mark.asyncio
async def test_refund_and_adjustment_keep_buckets_consistent(points_service, make_account) -> None:
    account = await make_account()
    await points_service.credit(account.id, 1000)
    await points_service.debit(account.id, 400)

    refunded = await points_service.credit(account.id, 400, entry_type=LedgerEntryType.REFUND)
    assert refunded.wallet_after.redeemed_points == 0
    assert refunded.wallet_after.total_earned == 1000
    assert refunded.wallet_after.available_points == 1000

    adjusted = await points_service.debit(account.id, 150, entry_type=LedgerEntryType.ADJUSTMENT)
    assert adjusted.wallet_after.total_earned == 850
    assert adjusted.wallet_after.available_points == 850
    assert adjusted.wallet_after.is_consistent

    report = await points_service.reconcile(account.id)
    assert report.balanced
    assert report.ledger_total == 850


@pytest.mark.asyncio
async def test_debits_consume_oldest_expiring_lots_first(points_service, make_account, session_factory) -> None:
    account = await make_account()
    now = utcnow()

    async def _credit_at(offset_days: int, points: int) -> None:
        async def _work(session):
            await points_service.ledger(session).credit(account.id, points, now=now - timedelta(days=offset_days))

        await points_service.run_for_account(account.id, _work)

    await _credit_at(30, 100)
    await _credit_at(20, 100)
    await _credit_at(10, 100)

    await points_service.debit(account.id, 150)

    lots = [entry for entry in await _entries(session_factory, account.id) if entry.entry_type == LedgerEntryType.CREDIT]
    lots.sort(key=lambda entry: ensure_aware(entry.expiry_date))
    assert [lot.consumed_points for lot in lots] == [100, 50, 0]
    assert [lot.remaining_points for lot in lots] == [0, 50, 100]
    assert [lot.points for lot in lots] == [100, 100, 100]


@pytest.mark.asyncio
async def test_randomised_sequences_conserve_points(points_service, make_account, session_factory) -> None:
    account = await make_account()
    rng = random.Random(20261019)
    expected = 0

    for _ in range(60):
        points = rng.randint(1, 300)
        if rng.random() < 0.5:
            await points_service.credit(account.id, points)
            expected += points
            continue
        if points > expected:
            with pytest.raises(InsufficientBalanceError):
                await points_service.debit(account.id, points)
        else:
            await points_service.debit(account.id, points)
            expected -= points

        balance = await points_service.get_balance(account.id)
        assert balance.available_points == expected
        assert balance.available_points >= 0
        assert balance.is_consistent

    entries = await _entries(session_factory, account.id)
    assert sum(entry.points for entry in entries) == expected
    report = await points_service.reconcile(account.id)
    assert report.balanced
    assert report.as_dict()["ledger_total"] == expected


@pytest.mark.asyncio
async def test_wallet_page_lists_newest_entries_first(points_service, make_account) -> None:
    account = await make_account()
    for points in (10, 20, 30):
        await points_service.credit(account.id, points)

    page = await points_service.get_wallet(account.id, page=1, limit=2)

    assert page.summary.available_points == 60
    assert page.total == 3
    assert page.pages == 2
    assert [entry.points for entry in page.entries] == [30, 20]
