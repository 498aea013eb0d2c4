import os
import tempfile

# Configure the app for tests before anything under portal/ reads settings.
_TMP = tempfile.mkdtemp(prefix="portal-tests-")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP}/import.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("STORAGE_LOCAL_ROOT", os.path.join(_TMP, "storage"))
os.environ.setdefault("FRONTEND_URL", "https://portal.test")
os.environ.setdefault("BACKEND_URL", "https://api.portal.test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("INTERNAL_JOB_SECRET", "job-secret")
os.environ.setdefault("BREVO_API_KEY", "")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from portal.main import app
from portal.database import Base, enable_sqlite_savepoints, get_db, get_session_factory
from portal.models.company import Company
from portal.models.user import User
from portal.services.auth_service import create_access_token, hash_password
from portal.services.batch_notifier import batch_tracker
from portal.services.security_monitor import security_monitor

TEST_PASSWORD = "Str0ng!Passw0rd"


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", poolclass=NullPool)
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_trackers():
    security_monitor.clear()
    batch_tracker.clear()
    yield
    security_monitor.clear()
    batch_tracker.clear()


@pytest.fixture
def make_user(db):
    async def _make(role="global_admin", email=None, password=TEST_PASSWORD, **fields):
        user = User(
            name=fields.pop("name", f"{role.replace('_', ' ').title()} User"),
            email=email or f"{role}@example.com",
            role=role,
            password_hash=hash_password(password) if password else None,
            **fields,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_company(db):
    async def _make(name="Acme Ltd", **fields):
        company = Company(name=name, **fields)
        db.add(company)
        await db.commit()
        return company

    return _make


def auth_headers(user: User) -> dict:
    token = create_access_token(user_id=str(user.id), role=user.role, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers
