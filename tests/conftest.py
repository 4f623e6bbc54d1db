import os
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

# Must be set before the app modules read their settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ["RATE_LIMIT_ENABLED"] = "False"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.auth import create_access_token
from app.database.database import Base, get_db
from app.main import app
from app.models.models import Employee, PayPeriod, Product, Role, StockLevel, User
from app.schemas.payroll_schema import PayPeriodType
from app.schemas.user_schema import RoleName
from app.services.auth_service import hash_password, seed_roles

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")
PASSWORD = "password123"


@pytest_asyncio.fixture
async def test_engine():
    """
    A fresh in-memory database per test function.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Session used by tests to arrange data. Roles are seeded up front.
    """
    async with session_factory() as session:
        await seed_roles(session)
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a new httpx client instance for each test function.
    """

    async def get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = get_test_db
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest_asyncio.fixture
async def make_user(test_db: AsyncSession):
    """
    Factory: create a user holding the given roles.
    """

    async def _make_user(email: str, *roles: RoleName, name: str | None = None) -> User:
        result = await test_db.execute(select(Role).where(Role.name.in_(roles)))
        user = User(
            name=name or email.split("@")[0].title(),
            email=email,
            password=hash_password(PASSWORD),
            roles=list(result.scalars().all()),
        )
        test_db.add(user)
        await test_db.commit()
        return user

    return _make_user


@pytest_asyncio.fixture
async def admin(make_user) -> User:
    return await make_user("admin@example.com", RoleName.ADMIN)


@pytest_asyncio.fixture
async def admin_headers(admin: User) -> dict:
    return auth_headers(admin)


@pytest_asyncio.fixture
async def pay_period(test_db: AsyncSession) -> PayPeriod:
    period = PayPeriod(
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 30),
        pay_date=date(2024, 7, 5),
        type=PayPeriodType.MONTHLY,
    )
    test_db.add(period)
    await test_db.commit()
    return period


@pytest_asyncio.fixture
async def employee(test_db: AsyncSession) -> Employee:
    worker = Employee(
        name="Juan Dela Cruz",
        email="juan@example.com",
        department="Warehouse",
        rate=Decimal("150.00"),
    )
    test_db.add(worker)
    await test_db.commit()
    return worker


@pytest_asyncio.fixture
async def make_product(test_db: AsyncSession):
    async def _make_product(
        sku: str,
        quantity: int = 0,
        price: str | None = "100.00",
        reorder_level: int = 0,
        category: str | None = "Cement",
    ) -> Product:
        product = Product(
            name=f"Product {sku}",
            sku=sku,
            category=category,
            unit="bag",
            list_price=Decimal(price) if price is not None else None,
            reorder_level=reorder_level,
        )
        product.stock_level = StockLevel(quantity=quantity)
        test_db.add(product)
        await test_db.commit()
        return product

    return _make_product


@pytest.fixture
def headers_for():
    return auth_headers
