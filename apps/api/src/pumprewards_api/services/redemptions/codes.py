"""Redemption code generation."""

from __future__ import annotations

import random
from typing import Awaitable, Callable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pumprewards_api.core.settings import settings
from pumprewards_api.models.redemption import Redemption
from pumprewards_api.services.points.errors import CodeGenerationError

CODE_PREFIX = "RED"
CodeExists = Callable[[str], Awaitable[bool]]


def random_code(rng: random.Random | None = None) -> str:
    source = rng or random
    return f"{CODE_PREFIX}{source.randint(10_000_000, 99_999_999)}"


async def generate_redemption_code(
    code_exists: CodeExists,
    *,
    max_attempts: int | None = None,
    rng: random.Random | None = None,
) -> str:
    """Draw ``RED`` + 8 digits until ``code_exists`` reports a free one.

    The unique index on ``redemption_code`` remains the final arbiter.
    """

    attempts = max_attempts or settings.redemption_code_max_attempts
    for attempt in range(1, attempts + 1):
        candidate = random_code(rng)
        if not await code_exists(candidate):
            if attempt > 1:
                logger.debug("Generated redemption code after collisions", attempts=attempt)
            return candidate
    logger.error("Exhausted redemption code attempts", attempts=attempts)
    raise CodeGenerationError("Could not generate a unique redemption code", attempts=attempts)


def code_exists_in(session: AsyncSession) -> CodeExists:
    async def _exists(code: str) -> bool:
        stmt = select(Redemption.id).where(Redemption.redemption_code == code).limit(1)
        return (await session.execute(stmt)).scalar_one_or_none() is not None

    return _exists


__all__ = ["CODE_PREFIX", "code_exists_in", "generate_redemption_code", "random_code"]
