import os

# Settings require a database URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from querydeck.main import app
from querydeck.core import models
from querydeck.core.database import Base, get_db
from querydeck.core.parameters import dump_parameters
from querydeck.core.schemas import ParameterType, QueryParameter
from querydeck.client.store import StoreClient
from querydeck.client.controller import QueryLifecycleController

# Force tests onto a private in-memory database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Fresh database per test: one shared connection so every session sees the same memory db
@pytest_asyncio.fixture(scope="function")
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        # Application data the custom queries run against
        await conn.execute(
            text(
                "CREATE TABLE orders ("
                "id INTEGER PRIMARY KEY, customer TEXT NOT NULL, "
                "total REAL NOT NULL, paid BOOLEAN NOT NULL DEFAULT 0, "
                "created_at TEXT NOT NULL)"
            )
        )
        await conn.execute(
            text(
                "INSERT INTO orders (customer, total, paid, created_at) VALUES "
                "('alice', 120.5, 1, '2024-01-05'), "
                "('bob', 40.0, 0, '2024-02-10'), "
                "('carol', 75.25, 1, '2024-03-15')"
            )
        )
    yield engine
    await engine.dispose()


# Session shared by fixtures and the app, closed once the test is done
@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine):
    TestingSessionLocal = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with TestingSessionLocal() as session:
        yield session
        await session.rollback()
        await session.close()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# Admin-side store client talking to the app in-process
@pytest_asyncio.fixture(scope="function")
async def store(client: AsyncClient):
    return StoreClient(http=client)


@pytest_asyncio.fixture(scope="function")
async def controller(store: StoreClient):
    return QueryLifecycleController(store, confirm=lambda message: True)


async def add_query(db_session: AsyncSession, **fields) -> models.CustomQuery:
    values = {
        "slug": f"q-{uuid.uuid4().hex[:8]}",
        "name": "Orders by customer",
        "sql_query": "SELECT id, customer, total FROM orders WHERE customer = :customer",
        "parameters": dump_parameters(
            [
                QueryParameter(
                    name="customer", type=ParameterType.STRING, required=True
                )
            ]
        ),
        "method": "GET",
        "is_readonly": True,
        "cache_ttl": 0,
        "is_enabled": True,
    }
    values.update(fields)

    query = models.CustomQuery(**values)
    db_session.add(query)
    await db_session.commit()
    await db_session.refresh(query)
    return query


# Factory for extra queries inside a test
@pytest_asyncio.fixture(scope="function")
async def make_query(db_session: AsyncSession):
    async def _make(**fields):
        return await add_query(db_session, **fields)

    return _make


# Query
@pytest_asyncio.fixture(scope="function")
async def test_query(db_session: AsyncSession):
    return await add_query(db_session)


# Mutating query
@pytest_asyncio.fixture(scope="function")
async def insert_query(db_session: AsyncSession):
    return await add_query(
        db_session,
        name="Add order",
        sql_query=(
            "INSERT INTO orders (customer, total, paid, created_at) "
            "VALUES (:customer, :total, :paid, :created_at)"
        ),
        parameters=dump_parameters(
            [
                QueryParameter(name="customer", required=True),
                QueryParameter(name="total", type=ParameterType.NUMBER, required=True),
                QueryParameter(name="paid", type=ParameterType.BOOLEAN, default=False),
                QueryParameter(name="created_at", type=ParameterType.DATE, required=True),
            ]
        ),
        method="POST",
        is_readonly=False,
    )
