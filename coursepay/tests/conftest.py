"""
Centralized Test Configuration.
"""

import os

# Merchant configuration must exist before settings are first imported
os.environ.setdefault("VNPAY_TMN_CODE", "TESTTMN1")
os.environ.setdefault("VNPAY_HASH_SECRET", "TESTSECRETKEY0123456789")
os.environ.setdefault("VNPAY_URL", "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html")
os.environ.setdefault("VNPAY_RETURN_URL", "http://test/v1/payments/vnpay-return")
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")

from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from coursepay.app.main import app
from coursepay.app.db.session import get_db, Base
from coursepay.app.core.redis_client import get_redis
import coursepay.app.core.redis_client as redis_client_module
from coursepay.app.models.course import Course
from coursepay.app.models.enums import UserRole
from coursepay.app.models.user import User
from coursepay.tests.factories import create_checkout

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for token revocation
class MockRedis:
    def __init__(self):
        self.store = {}

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def delete(self, key):
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


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

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
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
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Domain fixtures

@pytest.fixture
async def users(db_session):
    """Admin, instructor and student accounts."""
    admin = User(email="admin@test.vn", username="admin", full_name="Admin", role=UserRole.ADMIN)
    instructor = User(email="instructor@test.vn", username="instructor", full_name="Nguyễn Văn A", role=UserRole.INSTRUCTOR)
    student = User(email="student@test.vn", username="student", full_name="Trần Thị B", role=UserRole.STUDENT)
    db_session.add_all([admin, instructor, student])
    await db_session.commit()
    return {"admin": admin, "instructor": instructor, "student": student}


@pytest.fixture
async def course(db_session, users):
    course = Course(instructor_id=users["instructor"].id, title="Lập trình Python", price=Decimal("500000.00"))
    db_session.add(course)
    await db_session.commit()
    return course


@pytest.fixture
async def checkout(db_session, users, course):
    """Student's pending 500000 VND checkout with reference 'abc123'."""
    return await create_checkout(db_session, users["student"], [course], "abc123")

