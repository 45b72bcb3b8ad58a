"""Pytest fixtures for testing."""

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

import bcrypt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

SYSTEM_ADMIN_EMAIL = "root@educonnect.org"
SYSTEM_ADMIN_PASSWORD = "RootPass123!"

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./educonnect_test.db")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SYSTEM_ADMIN_EMAIL", SYSTEM_ADMIN_EMAIL)
os.environ.setdefault(
    "SYSTEM_ADMIN_PASSWORD_HASH",
    bcrypt.hashpw(SYSTEM_ADMIN_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode(
        "utf-8"
    ),
)

from educonnect.api.deps import get_cache, get_notification_service  # noqa: E402
from educonnect.core.database import get_db  # noqa: E402
from educonnect.core.security import create_access_token, hash_password  # noqa: E402
from educonnect.main import app  # noqa: E402
from educonnect.models.base import Base  # noqa: E402
from educonnect.models.enums import UserRole  # noqa: E402
from educonnect.models.school import School  # noqa: E402
from educonnect.models.student import Student  # noqa: E402
from educonnect.models.user import User  # noqa: E402
from educonnect.services.auth_service import token_claims  # noqa: E402
from educonnect.services.cache_service import CacheClient  # noqa: E402
from educonnect.services.notification_service import EmailResult  # noqa: E402

ADMIN_PASSWORD = "AdminPass123!"
USER_PASSWORD = "UserPass123!"

# One in-memory database shared by the test session and the app under test
test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@dataclass
class FakeNotifier:
    """Records outgoing emails instead of talking to SMTP."""

    succeed: bool = True
    sent: list[dict[str, Any]] = field(default_factory=list)

    async def send_templated_invitation(
        self,
        template_name: str,
        to_email: str,
        subject: str,
        variables: dict[str, Any],
    ) -> EmailResult:
        self.sent.append(
            {
                "template": template_name,
                "to": to_email,
                "subject": subject,
                "variables": variables,
            }
        )
        if not self.succeed:
            return EmailResult(success=False, error="smtp unavailable")
        return EmailResult(success=True, message_id=f"<{len(self.sent)}@test>")


@pytest_asyncio.fixture(scope="function")
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Create test database session.

    Creates all tables before each test and drops them after.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest_asyncio.fixture(scope="function")
async def client(db: AsyncSession, notifier: FakeNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database, cache and email overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: CacheClient()
    app.dependency_overrides[get_notification_service] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_school(
    db: AsyncSession,
    school_id: str = "GRE1234",
    school_name: str = "Greenfield Academy",
    is_active: bool = True,
    is_verified: bool = True,
) -> School:
    school = School(
        school_id=school_id,
        school_name=school_name,
        email=f"office@{school_id.lower()}.edu",
        is_active=is_active,
        is_verified=is_verified,
    )
    db.add(school)
    await db.commit()
    return school


async def create_user(
    db: AsyncSession,
    school: School,
    email: str,
    role: UserRole = UserRole.TEACHER,
    password: str = USER_PASSWORD,
    **overrides: Any,
) -> User:
    """Create an active, verified account with a permanent password."""
    values: dict[str, Any] = {
        "school_id": school.school_id,
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "first_name": "Test",
        "last_name": role.value.capitalize(),
        "is_active": True,
        "is_verified": True,
        "is_temporary_password": False,
    }
    values.update(overrides)
    user = User(**values)
    db.add(user)
    await db.commit()
    return user


async def create_student(
    db: AsyncSession,
    school: School,
    student_id: str,
    first_name: str = "Sam",
    last_name: str = "Student",
    **overrides: Any,
) -> Student:
    student = Student(
        school_id=school.school_id,
        student_id=student_id,
        first_name=first_name,
        last_name=last_name,
        class_name=overrides.pop("class_name", "5A"),
        parent_ids=[],
        **overrides,
    )
    db.add(student)
    await db.commit()
    return student


def auth_headers(user: User) -> dict[str, str]:
    """Bearer header carrying an access token for ``user``."""
    return {"Authorization": f"Bearer {create_access_token(token_claims(user))}"}


@pytest_asyncio.fixture
async def test_school(db: AsyncSession) -> School:
    return await create_school(db)


@pytest_asyncio.fixture
async def other_school(db: AsyncSession) -> School:
    return await create_school(db, school_id="RIV5678", school_name="Riverside High")


@pytest_asyncio.fixture
async def test_admin(db: AsyncSession, test_school: School) -> User:
    """School admin with a permanent password."""
    return await create_user(
        db,
        test_school,
        "admin@greenfield.edu",
        role=UserRole.ADMIN,
        password=ADMIN_PASSWORD,
        first_name="Alice",
        last_name="Admin",
    )


@pytest_asyncio.fixture
async def admin_headers(test_admin: User) -> dict[str, str]:
    return auth_headers(test_admin)


@pytest_asyncio.fixture
async def test_students(db: AsyncSession, test_school: School) -> list[Student]:
    return [
        await create_student(db, test_school, "S-001", first_name="Sam"),
        await create_student(db, test_school, "S-002", first_name="Kim"),
    ]


@pytest_asyncio.fixture
async def foreign_student(db: AsyncSession, other_school: School) -> Student:
    return await create_student(db, other_school, "R-001", first_name="Ray")
