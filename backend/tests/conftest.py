"""
Centralized Test Configuration.
"""

import os
import tempfile
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, Pool

from backend.app.main import app
from backend.app.db.session import get_db, get_session_factory, Base
from backend.app.core.clock import utc_now
from backend.app.core.jwt import create_access_token
from backend.app.core.redis_client import get_redis
import backend.app.core.redis_client as redis_client_module
from backend.app.models.billing_enums import InvoiceStatus, OrderStatus
from backend.app.models.company import Company
from backend.app.models.enums import UserRole
from backend.app.models.invoice import Invoice
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.user import User

# File-backed SQLite so concurrent sessions use separate connections
_DB_DIR = tempfile.mkdtemp(prefix="wallet-core-tests-")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"timeout": 30},
    poolclass=NullPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False
        self.broken = False  # simulate an unreachable server

    def _check(self):
        if self.broken:
            raise ConnectionError("Redis unavailable")

    async def ping(self):
        if self._closed or self.broken:
            return False
        return True

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        return True

    async def delete(self, key):
        self._check()
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        self._check()
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}
        self.broken = False

    async def aclose(self):
        self._closed = True
        self.store = {}


_mock_redis = MockRedis()


@pytest.fixture(scope="session")
def redis_client_session():
    return _mock_redis


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    async def override_get_session_factory():
        return TestingSessionLocal

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------

async def _persist(obj):
    async with TestingSessionLocal() as session:
        session.add(obj)
        await session.commit()
        await session.refresh(obj)
    return obj


@pytest.fixture
def make_user():
    counter = {"n": 0}

    async def _make(
        email=None,
        balance="0",
        role=UserRole.GENERAL_USER,
        permissions=None,
        is_active=True,
    ) -> User:
        counter["n"] += 1
        return await _persist(User(
            email=email or f"user{counter['n']}@example.com",
            first_name="Test",
            last_name=f"User{counter['n']}",
            role=role,
            permissions=permissions or {"payflow": True, "invoiceflow": True, "stockflow": True},
            is_active=is_active,
            wallet_balance=Decimal(balance),
        ))

    return _make


@pytest.fixture
def make_company():
    async def _make(owner: User, name="Acme Trading") -> Company:
        return await _persist(Company(name=name, owner_id=owner.id, settings={}))

    return _make


@pytest.fixture
def make_product():
    async def _make(company: Company, price="10.00", quantity=10, name="Widget", sku=None, is_active=True) -> Product:
        return await _persist(Product(
            company_id=company.id,
            name=name,
            sku=sku or f"SKU-{name.upper()}",
            price=Decimal(price),
            quantity=quantity,
            low_stock_threshold=2,
            is_active=is_active,
        ))

    return _make


@pytest.fixture
def make_invoice():
    async def _make(
        company: Company,
        total="115.00",
        status=InvoiceStatus.SENT,
        due_in_days=14,
        client_email="client@example.com",
    ) -> Invoice:
        amount = Decimal(total)
        return await _persist(Invoice(
            company_id=company.id,
            client_email=client_email,
            invoice_number="INV-1001",
            items=[{"description": "Consulting", "quantity": "1", "rate": str(amount), "total": str(amount)}],
            subtotal=amount,
            tax=Decimal("0.00"),
            total=amount,
            status=status,
            due_date=utc_now() + timedelta(days=due_in_days),
        ))

    return _make


@pytest.fixture
def make_order():
    async def _make(company: Company, customer: User, lines, tax="0.00", status=OrderStatus.PENDING) -> Order:
        """lines: list of (product, quantity)."""
        items = []
        subtotal = Decimal("0.00")
        for product, quantity in lines:
            line_total = product.price * quantity
            subtotal += line_total
            items.append({
                "product_id": product.id,
                "product_name": product.name,
                "quantity": quantity,
                "price": str(product.price),
                "total": str(line_total),
            })
        return await _persist(Order(
            company_id=company.id,
            customer_id=customer.id,
            customer_email=customer.email,
            items=items,
            subtotal=subtotal,
            tax=Decimal(tax),
            total=subtotal + Decimal(tax),
            status=status,
        ))

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token(data={"sub": user.email, "user_id": user.id, "role": user.role.value})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def reload():
    """Fresh copy of a row from a new session."""
    async def _reload(model, pk):
        async with TestingSessionLocal() as session:
            return await session.get(model, pk)

    return _reload
