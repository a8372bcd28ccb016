"""Denormalised wallet summary kept beside the ledger."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.models.account import Account
from pumprewards_api.services.points.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
)


class WalletBucket(str, Enum):
    """Counter that absorbs a balance change alongside ``available_points``."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class WalletSummary:
    total_earned: int
    available_points: int
    redeemed_points: int
    expired_points: int

    @classmethod
    def from_account(cls, account: Account) -> "WalletSummary":
        return cls(
            total_earned=int(account.total_earned or 0),
            available_points=int(account.available_points or 0),
            redeemed_points=int(account.redeemed_points or 0),
            expired_points=int(account.expired_points or 0),
        )

    @property
    def is_consistent(self) -> bool:
        return self.available_points == self.total_earned - self.redeemed_points - self.expired_points

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class WalletStore:
    """Reads and mutates the wallet columns of :class:`Account`.

    ``apply_delta`` is only called by the ledger, in the same session as the
    ledger entry it mirrors.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balance(self, account_id: UUID) -> WalletSummary:
        account = await self._session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found", account_id=str(account_id))
        return WalletSummary.from_account(account)

    async def load_for_update(self, account_id: UUID) -> Account:
        """Fetch the account row locked for the rest of the transaction."""

        stmt = (
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found", account_id=str(account_id))
        return account

    def apply_delta(self, account: Account, delta: int, bucket: WalletBucket) -> WalletSummary:
        current = WalletSummary.from_account(account)
        available = current.available_points + delta
        if available < 0:
            raise InsufficientBalanceError(available=current.available_points, requested=-delta)

        earned = current.total_earned
        redeemed = current.redeemed_points
        expired = current.expired_points
        if bucket == WalletBucket.EARNED:
            earned += delta
        elif bucket == WalletBucket.REDEEMED:
            redeemed -= delta
        else:
            expired -= delta

        if earned < 0 or redeemed < 0 or expired < 0:
            raise InvalidAmountError(
                f"Change of {delta} would drive the {bucket.value} counter negative",
                account_id=str(account.id),
            )

        account.total_earned = earned
        account.available_points = available
        account.redeemed_points = redeemed
        account.expired_points = expired
        return WalletSummary(
            total_earned=earned,
            available_points=available,
            redeemed_points=redeemed,
            expired_points=expired,
        )


__all__ = ["WalletBucket", "WalletStore", "WalletSummary"]
