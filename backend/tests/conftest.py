"""
Pytest fixtures for test database, client, gateway and authentication.

Each test gets its own SQLite database file, so tests are isolated and
concurrent sessions behave like separate connections. Redis and the
background sweeper are disabled before the application is imported.
"""

import hashlib
import hmac
import os
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Optional

os.environ["REDIS_ENABLED"] = "false"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GATEWAY_BACKOFF_SECONDS"] = "0"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from academy_booking.api.deps import get_gateway
from academy_booking.core.security import create_access_token
from academy_booking.db.base import Base
from academy_booking.db.session import get_db
from academy_booking.main import app
from academy_booking.models import Batch, Center, Participant
from academy_booking.services.interfaces.gateway import (
    ExternalOrder,
    GatewayPayment,
    PaymentGateway,
    to_minor_units,
)

OWNER_ID = "academy-owner"
PARENT_ID = "parent-1"
OTHER_PARENT_ID = "parent-2"


def hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class FakeGateway(PaymentGateway):
    """In-memory gateway with real HMAC signatures."""

    def __init__(self, key_secret: str = "test_key_secret", webhook_secret: str = "test_webhook_secret"):
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.orders: dict[str, ExternalOrder] = {}
        self.payments: dict[str, GatewayPayment] = {}
        self.create_calls = 0
        self.fetch_calls = 0
        self.create_error: Optional[Exception] = None

    async def create_external_order(self, amount, currency, receipt, notes=None) -> ExternalOrder:
        self.create_calls += 1
        if self.create_error is not None:
            raise self.create_error
        order = ExternalOrder(
            id=f"order_{uuid.uuid4().hex[:14]}",
            amount=Decimal(amount),
            currency=currency,
            receipt=receipt,
            status="created",
        )
        self.orders[order.id] = order
        return order

    def sign_payment(self, order_id: str, payment_id: str) -> str:
        return hmac_sha256(self.key_secret, f"{order_id}|{payment_id}".encode("utf-8"))

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(self.sign_payment(order_id, payment_id), signature)

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self.fetch_calls += 1
        return self.payments[payment_id]

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        return bool(signature) and hmac.compare_digest(self.sign_webhook(body), signature)

    def pay(self, order_id: str, status: str = "captured", amount_minor: Optional[int] = None, method: str = "upi"):
        """Simulate the customer paying an order. Returns (payment_id, callback signature)."""
        order = self.orders[order_id]
        payment_id = f"pay_{uuid.uuid4().hex[:14]}"
        self.payments[payment_id] = GatewayPayment(
            id=payment_id,
            order_id=order_id,
            amount_minor=to_minor_units(order.amount) if amount_minor is None else amount_minor,
            currency=order.currency,
            status=status,
            method=method,
        )
        return payment_id, self.sign_payment(order_id, payment_id)

    def sign_webhook(self, body: bytes) -> str:
        return hmac_sha256(self.webhook_secret, body)


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a fresh session per request and the fake gateway."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers_for():
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(data={'sub': user_id})}"}

    return _headers


@pytest.fixture
def auth_headers(auth_headers_for) -> dict:
    return auth_headers_for(PARENT_ID)


@pytest.fixture
def owner_headers(auth_headers_for) -> dict:
    return auth_headers_for(OWNER_ID)


@pytest_asyncio.fixture
async def center(session_factory) -> Center:
    center = Center(id="center-1", owner_id=OWNER_ID, name="Riverside Sports Academy", allowed_genders=[])
    async with session_factory() as session:
        session.add(center)
        await session.commit()
    return center


@pytest_asyncio.fixture
async def make_batch(session_factory, center: Center):
    """Factory for published batches; keyword arguments override the defaults."""
    counter = {"n": 0}

    async def _make(**overrides) -> Batch:
        counter["n"] += 1
        values = dict(
            id=f"batch-{counter['n']}",
            center_id=center.id,
            sport_id="football",
            name=f"Under-15 Football {counter['n']}",
            capacity=10,
            age_min=5,
            age_max=15,
            allowed_genders=[],
            status="published",
            requires_approval=True,
            admission_fee=Decimal("0"),
            base_price=Decimal("1000.00"),
            start_date=date.today() - timedelta(days=7),
            end_date=date.today() + timedelta(days=60),
        )
        values.update(overrides)
        batch = Batch(**values)
        async with session_factory() as session:
            session.add(batch)
            await session.commit()
        return batch

    return _make


@pytest_asyncio.fixture
async def batch(make_batch) -> Batch:
    """Capacity 10, approval required, 1000.00 per participant."""
    return await make_batch()


@pytest_asyncio.fixture
async def make_participants(session_factory):
    """Factory: make_participants(user_id, count, **overrides) -> list of ids."""
    counter = {"n": 0}

    async def _make(user_id: str = PARENT_ID, count: int = 1, **overrides) -> list[str]:
        ids = []
        for _ in range(count):
            counter["n"] += 1
            values = dict(
                id=f"child-{counter['n']}",
                user_id=user_id,
                first_name=f"Child{counter['n']}",
                last_name="Sharma",
                dob=date(date.today().year - 10, 1, 1),
                gender="male",
                has_disability=False,
            )
            values.update(overrides)
            ids.append(values["id"])
            async with session_factory() as session:
                session.add(Participant(**values))
                await session.commit()
        return ids

    return _make
