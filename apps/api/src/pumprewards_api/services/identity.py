"""Resolve customer-presented identifiers to accounts."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.models.account import Account
from pumprewards_api.services.points.errors import AccountNotFoundError, InvalidInputError


class IdentityResolver:
    """Look an account up by loyalty id, mobile number or internal id."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def resolve(self, identifier: str | UUID) -> Account:
        if isinstance(identifier, UUID):
            account = await self._session.get(Account, identifier)
            if account is None:
                raise AccountNotFoundError("Account not found", identifier=str(identifier))
            return account

        value = (identifier or "").strip()
        if not value:
            raise InvalidInputError("Customer identifier is required")

        stmt = select(Account).where(or_(Account.loyalty_id == value, Account.mobile == value))
        account = (await self._session.execute(stmt)).scalars().first()
        if account is not None:
            return account

        try:
            account_id = UUID(value)
        except ValueError:
            account_id = None
        if account_id is not None:
            account = await self._session.get(Account, account_id)
            if account is not None:
                return account
        raise AccountNotFoundError("Account not found", identifier=value)


__all__ = ["IdentityResolver"]
