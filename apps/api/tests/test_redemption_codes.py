import random
import re

import pytest

from pumprewards_api.services.points.errors import CodeGenerationError
from pumprewards_api.services.redemptions.codes import generate_redemption_code, random_code

CODE_PATTERN = re.compile(r"^RED\d{8}$")


def _exists_in(codes: set[str]):
    async def _exists(code: str) -> bool:
        return code in codes

    return _exists


def test_random_code_format() -> None:
    rng = random.Random(7)
    codes = [random_code(rng) for _ in range(100)]

    assert all(CODE_PATTERN.match(code) for code in codes)


@pytest.mark.asyncio
async def test_ten_thousand_codes_are_unique() -> None:
    issued: set[str] = set()
    exists = _exists_in(issued)
    rng = random.Random(20261019)

    for _ in range(10_000):
        code = await generate_redemption_code(exists, rng=rng, max_attempts=10)
        assert code not in issued
        issued.add(code)

    assert len(issued) == 10_000


@pytest.mark.asyncio
async def test_collision_draws_again() -> None:
    colliding = random_code(random.Random(42))
    code = await generate_redemption_code(_exists_in({colliding}), rng=random.Random(42), max_attempts=3)

    assert code != colliding
    assert CODE_PATTERN.match(code)


@pytest.mark.asyncio
async def test_exhausted_attempts_raise() -> None:
    async def _always_taken(code: str) -> bool:
        return True

    with pytest.raises(CodeGenerationError) as excinfo:
        await generate_redemption_code(_always_taken, max_attempts=4)

    assert excinfo.value.context["attempts"] == 4
