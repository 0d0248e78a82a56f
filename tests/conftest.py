"""
Global pytest configuration and fixtures for cashier tests.

Every test gets its own in-memory SQLite database, a frozen clock and a fresh
sandbox processor.
"""

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime

import pytest
import pytest_asyncio

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PROCESSOR__BACKEND", "sandbox")

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dotmac.cashier.clock import FrozenClock
from dotmac.cashier.customers.models import Customer
from dotmac.cashier.customers.service import CustomerService
from dotmac.cashier.db import create_all_tables_async, drop_all_tables_async
from dotmac.cashier.invoicing.service import InvoiceService
from dotmac.cashier.plans.models import Plan
from dotmac.cashier.plans.service import PlanRegistry
from dotmac.cashier.processor.sandbox import SandboxProcessor
from dotmac.cashier.processor.schemas import PlanAttributes, PlanInterval
from dotmac.cashier.settings import Settings, get_settings, reset_settings
from dotmac.cashier.subscriptions.service import SubscriptionService

FROZEN_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
CARD_TOKEN = "tok_test_visa_4242"


@pytest.fixture
def settings() -> Settings:
    """Fresh settings for each test."""
    reset_settings()
    yield get_settings()
    reset_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_NOW)


@pytest_asyncio.fixture
async def async_db_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory database engine with all cashier tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_all_tables_async(engine)
    yield engine
    await drop_all_tables_async(engine)
    await engine.dispose()


@pytest.fixture
def session_maker(async_db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def sandbox(clock: FrozenClock) -> SandboxProcessor:
    return SandboxProcessor(clock)


@pytest.fixture
def customer_service(sandbox: SandboxProcessor, clock: FrozenClock) -> CustomerService:
    return CustomerService(sandbox, clock)


@pytest.fixture
def plan_registry(sandbox: SandboxProcessor) -> PlanRegistry:
    return PlanRegistry(sandbox)


@pytest.fixture
def subscription_service(
    sandbox: SandboxProcessor,
    customer_service: CustomerService,
    plan_registry: PlanRegistry,
    clock: FrozenClock,
    settings: Settings,
) -> SubscriptionService:
    return SubscriptionService(
        sandbox, customers=customer_service, plans=plan_registry, clock=clock, settings=settings
    )


@pytest.fixture
def invoice_service(
    sandbox: SandboxProcessor, customer_service: CustomerService, settings: Settings
) -> InvoiceService:
    return InvoiceService(sandbox, customers=customer_service, settings=settings)


@pytest_asyncio.fixture
async def plans(async_db_session: AsyncSession, plan_registry: PlanRegistry) -> dict[str, Plan]:
    """Monthly plans at $10 and $25, plus a $10 plan with a 14-day default trial."""
    definitions = [
        PlanAttributes(id="basic-monthly", name="Basic", amount=1000),
        PlanAttributes(id="pro-monthly", name="Pro", amount=2500),
        PlanAttributes(id="trial-monthly", name="Trial", amount=1000, trial_period_days=14),
        PlanAttributes(id="basic-yearly", name="Basic yearly", amount=10000, interval=PlanInterval.YEAR),
    ]
    registered = {}
    for attributes in definitions:
        registered[attributes.id] = await plan_registry.register(async_db_session, attributes)
    return registered


@pytest_asyncio.fixture
async def customer(async_db_session: AsyncSession, customer_service: CustomerService) -> Customer:
    """A customer linked to the processor with a card on file."""
    customer = await customer_service.create(async_db_session, "taylor@example.com", "Taylor Reed")
    return await customer_service.create_as_processor_customer(
        async_db_session, customer, CARD_TOKEN
    )


@pytest.fixture
def now(clock: FrozenClock):
    """The frozen instant every service sees."""
    return clock.now()


@pytest.fixture
def card_token() -> str:
    return CARD_TOKEN
