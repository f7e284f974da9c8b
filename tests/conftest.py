from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import db
from config import settings
from db import ScheduledPayment

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
TEST_SECRET = "test-secret"


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    # file-backed so every session sees the same tables
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'schedules.db'}")
    monkeypatch.delenv("DATABASE_PUBLIC_URL", raising=False)
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest.fixture
def make_schedule(database):
    """Insert a schedule row directly, bypassing creation-time validation."""

    async def _make(**overrides):
        fields = dict(
            schedule_id=f"sched_{uuid4().hex[:12]}",
            username="alice",
            wallet_address="0xwallet",
            token_symbol="USDC",
            contract_address="0xusdc",
            decimals=6,
            recipient="0xbob",
            amount="25",
            frequency="once",
            status="active",
            next_execution_at=T0,
            executed_count=0,
            retry_count=0,
            fixed_stuck_processing=False,
            created_at=T0 - timedelta(days=1),
            updated_at=T0 - timedelta(days=1),
        )
        fields.update(overrides)
        return await db.insert_schedule(ScheduledPayment(**fields))

    return _make


@pytest.fixture
def token(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", TEST_SECRET)

    def _token(username="alice"):
        return jwt.encode({"username": username}, TEST_SECRET, algorithm="HS256")

    return _token


@pytest_asyncio.fixture
async def client(database, token):
    from main import app

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token()}"},
    ) as c:
        yield c
