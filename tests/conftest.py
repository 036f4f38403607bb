import asyncio
import json
from base64 import b64encode
from typing import Any

import itsdangerous
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from companion.app.core.config import Settings
from companion.app.db.async_session import get_db
from companion.app.db.base import Base
from companion.app.db.crud import create_correction, create_user
from companion.app.db.models import Correction, Feedback, User
from companion.app.main import create_app
from companion.app.middleware.rate_limit import InMemoryRateLimiter

SESSION_SECRET = "test-session-secret"


def _sqlite_url_from_absolute_path(path: str) -> str:
    # SQLAlchemy expects 4 slashes for absolute paths.
    return f"sqlite+aiosqlite:////{path.lstrip('/')}"


def make_session_cookie(data: dict, secret: str = SESSION_SECRET) -> str:
    """Build a cookie the way Starlette's SessionMiddleware signs it."""
    payload = b64encode(json.dumps(data).encode("utf-8"))
    return itsdangerous.TimestampSigner(secret).sign(payload).decode("utf-8")


class FakeClock:
    """Settable epoch-seconds clock for the in-memory limiter."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Database:
    """Temporary sqlite database plus sync helpers for seeding and reading."""

    def __init__(self, url: str):
        # NullPool: seeding runs on a different event loop than the app
        self.engine = create_async_engine(url, poolclass=NullPool)
        self.session_maker = async_sessionmaker(
            self.engine, expire_on_commit=False, autoflush=False
        )

    def run(self, coro: Any) -> Any:
        return asyncio.run(coro)

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def seed_user(self, username: str, roles=None, **fields: Any) -> User:
        async with self.session_maker() as session:
            user = await create_user(
                session, username, f"{username}@example.com", roles=roles, **fields
            )
            await session.commit()
            return user

    def add_user(self, username: str, roles=None, **fields: Any) -> User:
        return self.run(self.seed_user(username, roles=roles, **fields))

    def get_user(self, user_id: str) -> User:
        async def _get() -> User:
            async with self.session_maker() as session:
                return await session.get(User, user_id)

        return self.run(_get())

    def get_feedback(self, feedback_id: str) -> Feedback:
        async def _get() -> Feedback:
            async with self.session_maker() as session:
                return await session.get(Feedback, feedback_id)

        return self.run(_get())

    def all_feedback(self) -> list[Feedback]:
        async def _all() -> list[Feedback]:
            async with self.session_maker() as session:
                result = await session.execute(select(Feedback))
                return list(result.scalars().all())

        return self.run(_all())

    def add_correction(self, user_id=None, **fields: Any) -> Correction:
        data = {
            "entity_type": "item",
            "entity_id": "ak-74",
            "proposed_data": {"price": 120},
            "changes": {"price": {"from": 100, "to": 120}},
            "reason": "Price changed after the last wipe",
        }
        data.update(fields)

        async def _add() -> Correction:
            async with self.session_maker() as session:
                correction = await create_correction(session, user_id=user_id, **data)
                await session.commit()
                return correction

        return self.run(_add())

    def get_correction(self, correction_id: str) -> Correction:
        async def _get() -> Correction:
            async with self.session_maker() as session:
                return await session.get(Correction, correction_id)

        return self.run(_get())

    async def override_get_db(self):
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


@pytest.fixture
def db(tmp_path):
    database = Database(_sqlite_url_from_absolute_path(str(tmp_path / "companion_test.db")))
    database.run(database.create_tables())
    yield database
    database.run(database.engine.dispose())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return InMemoryRateLimiter(clock=clock)


@pytest.fixture
def test_settings():
    return Settings(
        environment="test",
        session_secret_key=SESSION_SECRET,
        redis_url="",
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture
def app(db, limiter, test_settings):
    application = create_app(settings=test_settings, rate_limiter=limiter)
    application.dependency_overrides[get_db] = db.override_get_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def login(client):
    """Attach a signed session cookie for a user to the test client."""

    def _login(user: User) -> TestClient:
        client.cookies.clear()
        client.cookies.set("companion_session", make_session_cookie({"user_id": user.id}))
        return client

    return _login
