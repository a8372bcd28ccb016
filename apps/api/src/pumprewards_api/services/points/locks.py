"""In-process per-account mutual exclusion for wallet writes."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Hashable

from loguru import logger

from pumprewards_api.core.settings import settings
from pumprewards_api.services.points.errors import ConcurrencyConflictError


@dataclass
class _LockSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class AccountLockRegistry:
    """Hand out one ``asyncio.Lock`` per account, dropping idle ones.

    Every read-check-write of a wallet runs while its account's lock is held,
    commit included, so two writers never see the same starting balance.
    Slots are scoped to the running event loop.
    """

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self._timeout_seconds = timeout_seconds
        self._slots: dict[Hashable, _LockSlot] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def timeout_seconds(self) -> float:
        if self._timeout_seconds is not None:
            return self._timeout_seconds
        return settings.points_lock_timeout_seconds

    def _slot(self, key: Hashable) -> _LockSlot:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            self._slots = {}
            self._loop = loop
        slot = self._slots.get(key)
        if slot is None:
            slot = _LockSlot()
            self._slots[key] = slot
        return slot

    def is_locked(self, key: Hashable) -> bool:
        slot = self._slots.get(key)
        return bool(slot and slot.lock.locked())

    @asynccontextmanager
    async def hold(self, key: Hashable, *, timeout: float | None = None) -> AsyncIterator[None]:
        slot = self._slot(key)
        slot.holders += 1
        wait_for = self.timeout_seconds if timeout is None else timeout
        try:
            try:
                await asyncio.wait_for(slot.lock.acquire(), timeout=wait_for)
            except asyncio.TimeoutError as exc:
                logger.warning("Timed out waiting for account lock", account_id=str(key), timeout=wait_for)
                raise ConcurrencyConflictError(
                    "Account is busy, try again",
                    account_id=str(key),
                ) from exc
            try:
                yield
            finally:
                slot.lock.release()
        finally:
            slot.holders -= 1
            if slot.holders == 0 and self._slots.get(key) is slot:
                del self._slots[key]


_REGISTRY = AccountLockRegistry()


def get_account_locks() -> AccountLockRegistry:
    return _REGISTRY


__all__ = ["AccountLockRegistry", "get_account_locks"]
