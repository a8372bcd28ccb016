from datetime import timedelta

import pytest

from pumprewards_api.core.timeutils import add_months, utcnow
from pumprewards_api.models import (
    LedgerEntryType,
    Redemption,
    RedemptionStatus,
    Reward,
    RewardAvailability,
)
from pumprewards_api.services.notifications import InMemoryNotificationDispatcher
from pumprewards_api.services.points.errors import (
    AlreadyUsedError,
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidStateError,
    RedemptionExpiredError,
    RedemptionNotFoundError,
    RewardUnavailableError,
)
from pumprewards_api.services.points.expiry import PointsExpiryService
from pumprewards_api.services.redemptions import RedemptionService, state_machine


@pytest.fixture
def redemptions(points_service, notifier) -> RedemptionService:
    return RedemptionService(points_service, notifier=notifier, code_ttl_days=7)


@pytest.fixture
def make_reward(session_factory):
    async def _make(*, points_required: int = 200, total_quantity: int | None = None) -> Reward:
        now = utcnow()
        reward = Reward(
            name="Free car wash",
            points_required=points_required,
            availability=RewardAvailability.LIMITED if total_quantity is not None else RewardAvailability.UNLIMITED,
            total_quantity=total_quantity,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
        )
        async with session_factory() as session:
            session.add(reward)
            await session.commit()
        return reward

    return _make


async def _stock(session_factory, reward_id) -> int:
    async with session_factory() as session:
        reward = await session.get(Reward, reward_id)
        return reward.redeemed_quantity


async def _entries(points_service, account_id):
    async with points_service.session_factory() as session:
        entries, _ = await points_service.ledger(session).list_entries(account_id, limit=100)
    return entries


@pytest.mark.asyncio
async def test_catalog_redemption_debits_and_reserves_stock(
    redemptions, points_service, make_account, make_reward, session_factory
) -> None:
    account = await make_account()
    reward = await make_reward(total_quantity=5)
    await points_service.credit(account.id, 500)

    result = await redemptions.create_catalog_redemption(account.id, reward.id)

    redemption = result.redemption
    assert redemption.status == RedemptionStatus.PENDING
    assert redemption.points_debited is True
    assert redemption.redemption_code.startswith("RED")
    assert len(redemption.redemption_code) == 11
    assert result.wallet.available_points == 300
    assert result.wallet.redeemed_points == 200
    assert await _stock(session_factory, reward.id) == 1


@pytest.mark.asyncio
async def test_catalog_redemption_without_balance_reserves_nothing(
    redemptions, points_service, make_account, make_reward, session_factory
) -> None:
    account = await make_account()
    reward = await make_reward(total_quantity=5)
    await points_service.credit(account.id, 100)

    with pytest.raises(InsufficientBalanceError):
        await redemptions.create_catalog_redemption(account.id, reward.id)

    assert await _stock(session_factory, reward.id) == 0
    assert (await points_service.get_balance(account.id)).available_points == 100
    items, total = await redemptions.list_redemptions(account_id=account.id)
    assert (list(items), total) == ([], 0)


@pytest.mark.asyncio
async def test_out_of_stock_reward_is_refused(
    redemptions, points_service, make_account, make_reward
) -> None:
    first = await make_account()
    second = await make_account()
    reward = await make_reward(total_quantity=1)
    await points_service.credit(first.id, 500)
    await points_service.credit(second.id, 500)

    await redemptions.create_catalog_redemption(first.id, reward.id)
    with pytest.raises(RewardUnavailableError):
        await redemptions.create_catalog_redemption(second.id, reward.id)

    assert (await points_service.get_balance(second.id)).available_points == 500


@pytest.mark.asyncio
async def test_approving_twice_debits_once(redemptions, points_service, make_account, make_reward) -> None:
    account = await make_account()
    reward = await make_reward()
    await points_service.credit(account.id, 500)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)

    approved = await redemptions.approve(created.redemption.id, approver_id=None)
    assert approved.redemption.status == RedemptionStatus.APPROVED
    assert approved.ledger is None

    with pytest.raises(InvalidStateError) as excinfo:
        await redemptions.approve(created.redemption.id, approver_id=None)
    assert excinfo.value.current_status == RedemptionStatus.APPROVED.value

    assert (await points_service.get_balance(account.id)).available_points == 300
    debits = [entry for entry in await _entries(points_service, account.id) if entry.points < 0]
    assert len(debits) == 1


@pytest.mark.asyncio
async def test_reject_refunds_points_and_stock(
    redemptions, points_service, notifier, make_account, make_reward, session_factory
) -> None:
    account = await make_account()
    reward = await make_reward(total_quantity=3)
    await points_service.credit(account.id, 500)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)

    with pytest.raises(InvalidInputError):
        await redemptions.reject(created.redemption.id, actor_id=None, reason="  ")

    rejected = await redemptions.reject(created.redemption.id, actor_id=None, reason="Reward discontinued")

    assert rejected.redemption.status == RedemptionStatus.REJECTED
    assert rejected.redemption.rejected_reason == "Reward discontinued"
    assert rejected.redemption.points_debited is False
    assert rejected.wallet.available_points == 500
    assert await _stock(session_factory, reward.id) == 0
    assert [item.kind for item in notifier.for_account(account.id)] == ["redemption_rejected"]
    refunds = [e for e in await _entries(points_service, account.id) if e.entry_type == LedgerEntryType.REFUND]
    assert [entry.points for entry in refunds] == [200]
    assert (await points_service.reconcile(account.id)).balanced

    with pytest.raises(InvalidStateError):
        await redemptions.approve(created.redemption.id, approver_id=None)


@pytest.mark.asyncio
async def test_cancel_pending_redemption(
    redemptions, points_service, notifier, make_account, make_reward
) -> None:
    account = await make_account()
    reward = await make_reward()
    await points_service.credit(account.id, 500)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)

    cancelled = await redemptions.cancel(created.redemption.id, actor_id=account.id)

    assert cancelled.redemption.status == RedemptionStatus.CANCELLED
    assert cancelled.redemption.cancelled_at is not None
    assert cancelled.wallet.available_points == 500
    assert [item.kind for item in notifier.sent] == ["redemption_cancelled"]


@pytest.mark.asyncio
async def test_at_pump_redemption_debits_on_approval(redemptions, points_service, make_account) -> None:
    account = await make_account(loyalty_id="LOYPUMP1", mobile="9000000001")
    await points_service.credit(account.id, 500)

    created = await redemptions.create_at_pump_redemption(
        "9000000001", 150, operator_id=None, pump_id="pump-3"
    )
    assert created.redemption.points_debited is False
    assert (await points_service.get_balance(account.id)).available_points == 500

    approved = await redemptions.approve(created.redemption.id, approver_id=None)

    assert approved.redemption.points_debited is True
    assert approved.ledger is not None and approved.ledger.points == -150
    assert approved.wallet.available_points == 350


@pytest.mark.asyncio
async def test_at_pump_redemption_checks_balance_upfront(redemptions, points_service, make_account) -> None:
    account = await make_account(loyalty_id="LOYPUMP2")
    await points_service.credit(account.id, 50)

    with pytest.raises(InsufficientBalanceError):
        await redemptions.create_at_pump_redemption("LOYPUMP2", 150, operator_id=None, pump_id="pump-3")


@pytest.mark.asyncio
async def test_verify_and_use_code(redemptions, points_service, make_account, make_reward) -> None:
    account = await make_account()
    reward = await make_reward()
    await points_service.credit(account.id, 500)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)
    code = created.redemption.redemption_code

    with pytest.raises(InvalidStateError):
        await redemptions.verify_code(code)

    await redemptions.approve(created.redemption.id, approver_id=None)
    verified = await redemptions.verify_code(f"  {code.lower()} ")
    assert verified.id == created.redemption.id

    used = await redemptions.use_code(code, "pump-9")
    assert used.status == RedemptionStatus.USED
    assert used.used_at_pump == "pump-9"

    with pytest.raises(AlreadyUsedError):
        await redemptions.use_code(code, "pump-9")
    with pytest.raises(RedemptionNotFoundError):
        await redemptions.verify_code("RED00000000")
    assert (await points_service.get_balance(account.id)).available_points == 300


@pytest.mark.asyncio
async def test_pending_code_expires_lazily_with_refund(
    redemptions, points_service, make_account, make_reward, session_factory
) -> None:
    account = await make_account()
    reward = await make_reward(total_quantity=2)
    await points_service.credit(account.id, 500)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)

    later = utcnow() + timedelta(days=8)
    with pytest.raises(RedemptionExpiredError):
        await redemptions.verify_code(created.redemption.redemption_code, now=later)

    stored = await redemptions.get_redemption(created.redemption.id)
    assert stored.status == RedemptionStatus.EXPIRED
    assert stored.points_debited is False
    assert (await points_service.get_balance(account.id)).available_points == 500
    assert await _stock(session_factory, reward.id) == 0

    with pytest.raises(RedemptionExpiredError):
        await redemptions.verify_code(created.redemption.redemption_code)


@pytest.mark.asyncio
async def test_approved_code_expires_without_refund(
    redemptions, points_service, make_account, make_reward
) -> None:
    account = await make_account()
    reward = await make_reward()
    await points_service.credit(account.id, 500)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)
    await redemptions.approve(created.redemption.id, approver_id=None)

    with pytest.raises(RedemptionExpiredError):
        await redemptions.use_code(created.redemption.redemption_code, "pump-1", now=utcnow() + timedelta(days=8))

    stored = await redemptions.get_redemption(created.redemption.id)
    assert stored.status == RedemptionStatus.EXPIRED
    assert (await points_service.get_balance(account.id)).available_points == 300


@pytest.mark.asyncio
async def test_approving_an_expired_at_pump_redemption(redemptions, points_service, make_account) -> None:
    account = await make_account(loyalty_id="LOYLATE1")
    await points_service.credit(account.id, 500)
    created = await redemptions.create_at_pump_redemption("LOYLATE1", 100, operator_id=None, pump_id="pump-1")

    with pytest.raises(RedemptionExpiredError):
        await redemptions.approve(created.redemption.id, approver_id=None, now=utcnow() + timedelta(days=8))

    stored = await redemptions.get_redemption(created.redemption.id)
    assert stored.status == RedemptionStatus.EXPIRED
    assert (await points_service.get_balance(account.id)).available_points == 500


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_rejection(
    points_service, observability, make_account, make_reward
) -> None:
    failing = InMemoryNotificationDispatcher(fail_with=RuntimeError("push gateway down"))
    service = RedemptionService(points_service, notifier=failing, code_ttl_days=7)
    account = await make_account()
    reward = await make_reward()
    await points_service.credit(account.id, 500)
    created = await service.create_catalog_redemption(account.id, reward.id)

    rejected = await service.reject(created.redemption.id, actor_id=None, reason="Fraud check")

    assert rejected.redemption.status == RedemptionStatus.REJECTED
    assert (await points_service.get_balance(account.id)).available_points == 500
    assert observability.snapshot().side_effects["redemption_rejected:failed"] == 1


@pytest.mark.asyncio
async def test_list_redemptions_filters_by_status(redemptions, points_service, make_account, make_reward) -> None:
    account = await make_account()
    reward = await make_reward(points_required=100)
    await points_service.credit(account.id, 500)
    first = await redemptions.create_catalog_redemption(account.id, reward.id)
    await redemptions.create_catalog_redemption(account.id, reward.id)
    await redemptions.approve(first.redemption.id, approver_id=None)

    pending, pending_total = await redemptions.list_redemptions(
        account_id=account.id, status=RedemptionStatus.PENDING
    )
    everything, total = await redemptions.list_redemptions(account_id=account.id, limit=1)

    assert pending_total == 1 and len(pending) == 1
    assert total == 2 and len(everything) == 1
    assert all(isinstance(item, Redemption) for item in everything)


@pytest.mark.asyncio
async def test_rejecting_pending_at_pump_redemption_touches_no_points(
    redemptions, points_service, make_account, make_reward, session_factory
) -> None:
    account = await make_account(loyalty_id="LOYPUMP4")
    unrelated = await make_reward(total_quantity=4)
    await points_service.credit(account.id, 500)
    created = await redemptions.create_at_pump_redemption("LOYPUMP4", 120, operator_id=None, pump_id="pump-2")

    rejected = await redemptions.reject(created.redemption.id, actor_id=None, reason="Customer left")

    assert rejected.redemption.status == RedemptionStatus.REJECTED
    assert rejected.redemption.points_debited is False
    assert rejected.ledger is None
    assert (await points_service.get_balance(account.id)).available_points == 500
    entries = await _entries(points_service, account.id)
    assert [entry.entry_type for entry in entries] == [LedgerEntryType.CREDIT]
    assert await _stock(session_factory, unrelated.id) == 0


@pytest.mark.asyncio
async def test_refunded_points_still_expire_with_their_lot(
    redemptions, points_service, notifier, make_account, make_reward
) -> None:
    account = await make_account()
    reward = await make_reward(points_required=1000)
    await points_service.credit(account.id, 1000)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)
    await redemptions.reject(created.redemption.id, actor_id=None, reason="Reward discontinued")

    expiry = PointsExpiryService(points_service, notifier=notifier)
    summary = await expiry.process_expired_points(as_of=add_months(utcnow(), 13))

    assert summary.points_expired == 1000
    balance = await points_service.get_balance(account.id)
    assert balance.available_points == 0
    assert balance.expired_points == 1000
    assert (await points_service.reconcile(account.id)).balanced


@pytest.mark.asyncio
async def test_refund_reopens_a_lot_the_sweep_already_retired(
    redemptions, points_service, notifier, make_account, make_reward
) -> None:
    account = await make_account()
    reward = await make_reward(points_required=600)
    await points_service.credit(account.id, 1000)
    created = await redemptions.create_catalog_redemption(account.id, reward.id)
    expiry = PointsExpiryService(points_service, notifier=notifier)
    after_expiry = add_months(utcnow(), 13)

    first = await expiry.process_expired_points(as_of=after_expiry)
    assert first.points_expired == 400

    await redemptions.reject(created.redemption.id, actor_id=None, reason="Reward discontinued")
    assert (await points_service.get_balance(account.id)).available_points == 600

    second = await expiry.process_expired_points(as_of=after_expiry)

    assert second.points_expired == 600
    balance = await points_service.get_balance(account.id)
    assert balance.available_points == 0
    assert balance.expired_points == 1000
    assert (await points_service.reconcile(account.id)).balanced


@pytest.mark.asyncio
async def test_code_claimed_by_another_account_is_redrawn(
    redemptions, points_service, observability, make_account, make_reward, monkeypatch
) -> None:
    first = await make_account()
    second = await make_account()
    reward = await make_reward(total_quantity=5)
    await points_service.credit(first.id, 500)
    await points_service.credit(second.id, 500)
    taken = (await redemptions.create_catalog_redemption(first.id, reward.id)).redemption.redemption_code

    codes = iter([taken, "RED12345678"])

    async def _draw(code_exists, **_):
        return next(codes)

    monkeypatch.setattr(state_machine, "generate_redemption_code", _draw)

    result = await redemptions.create_catalog_redemption(second.id, reward.id)

    assert result.redemption.redemption_code == "RED12345678"
    assert result.wallet.available_points == 300
    assert observability.snapshot().conflicts["retried"] == 1


@pytest.mark.asyncio
async def test_persistent_code_collision_surfaces_as_conflict(
    redemptions, points_service, observability, make_account, make_reward, session_factory, monkeypatch
) -> None:
    first = await make_account()
    second = await make_account()
    reward = await make_reward(total_quantity=5)
    await points_service.credit(first.id, 500)
    await points_service.credit(second.id, 500)
    taken = (await redemptions.create_catalog_redemption(first.id, reward.id)).redemption.redemption_code

    async def _draw(code_exists, **_):
        return taken

    monkeypatch.setattr(state_machine, "generate_redemption_code", _draw)

    with pytest.raises(ConcurrencyConflictError):
        await redemptions.create_catalog_redemption(second.id, reward.id)

    assert (await points_service.get_balance(second.id)).available_points == 500
    assert await _stock(session_factory, reward.id) == 1
    assert observability.snapshot().conflicts["surfaced"] == 1


@pytest.mark.asyncio
async def test_expiry_on_approval_is_recorded_after_commit(
    redemptions, points_service, observability, make_account
) -> None:
    account = await make_account(loyalty_id="LOYLATE2")
    await points_service.credit(account.id, 500)
    created = await redemptions.create_at_pump_redemption("LOYLATE2", 100, operator_id=None, pump_id="pump-1")

    with pytest.raises(RedemptionExpiredError):
        await redemptions.approve(created.redemption.id, approver_id=None, now=utcnow() + timedelta(days=8))

    transitions = observability.snapshot().redemptions
    assert transitions["expired"] == 1
    assert "approved" not in transitions
