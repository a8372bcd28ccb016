from pathlib import Path
from typing import Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pumprewards_api.app import create_app
from pumprewards_api.db.base import Base
from pumprewards_api.db.session import get_session
from pumprewards_api.models import Account, AccountStatus
from pumprewards_api.observability.points import PointsObservabilityStore
from pumprewards_api.services.notifications import InMemoryNotificationDispatcher
from pumprewards_api.services.points import (
    AccountLockRegistry,
    PointsConfig,
    PointsService,
    StaticConfigProvider,
)


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'points.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def points_config() -> PointsConfig:
    return PointsConfig(expiry_months=12, notification_days=(30, 7, 1))


@pytest.fixture
def observability() -> PointsObservabilityStore:
    return PointsObservabilityStore()


@pytest.fixture
def notifier() -> InMemoryNotificationDispatcher:
    return InMemoryNotificationDispatcher()


@pytest.fixture
def points_service(session_factory, points_config, observability) -> PointsService:
    return PointsService(
        session_factory,
        config_provider=StaticConfigProvider(points_config),
        locks=AccountLockRegistry(timeout_seconds=5.0),
        observability=observability,
        backoff_seconds=0.0,
    )


@pytest.fixture
def make_account(session_factory) -> Callable[..., Awaitable[Account]]:
    counter = 0

    async def _make(
        *,
        loyalty_id: str | None = None,
        mobile: str | None = None,
        status: AccountStatus = AccountStatus.ACTIVE,
    ) -> Account:
        nonlocal counter
        counter += 1
        account = Account(
            display_name=f"Customer {counter}",
            loyalty_id=loyalty_id or f"LOY{counter:06d}",
            mobile=mobile or f"98765{counter:05d}",
            status=status,
        )
        async with session_factory() as session:
            session.add(account)
            await session.commit()
        return account

    return _make


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
