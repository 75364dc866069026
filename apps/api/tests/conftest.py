import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.user import AUTH_TYPE_EMBEDDED, AUTH_TYPE_PASSWORD, User
from routers import rate_limit
from services.session_token import create_session_token


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "reel_credits.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def integration_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def make_user(session_maker):
    """Insert a user directly and return (user, auth headers)."""

    async def _make_user(credits=0, location_id=None, username=None):
        suffix = uuid.uuid4().hex[:8]
        user = User(
            id=str(uuid.uuid4()),
            username=username or f"user_{suffix}",
            email=f"user_{suffix}@example.com",
            password_hash="not-a-real-hash",
            credits_balance=credits,
            location_id=location_id,
            auth_type=AUTH_TYPE_EMBEDDED if location_id else AUTH_TYPE_PASSWORD,
        )
        async with session_maker() as session:
            session.add(user)
            await session.commit()
        headers = {"Authorization": f"Bearer {create_session_token(user.id)['token']}"}
        return user, headers

    return _make_user
