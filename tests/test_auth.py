"""Tests for session lookup and role guards."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request

from companion.app.core.error_handler import register_exception_handlers
from companion.app.db.async_session import get_db
from companion.app.exceptions import (
    AuthenticationError,
    BannedUserError,
    InsufficientPermissionsError,
)
from companion.app.middleware.auth import (
    AdminDep,
    AuthDep,
    ModeratorDep,
    Session,
    get_session,
    require_admin,
    require_admin_or_moderator,
    require_auth,
)

from conftest import SESSION_SECRET, make_session_cookie


def _request(session: dict | None = None) -> Request:
    scope = {"type": "http", "method": "GET", "path": "/", "headers": []}
    if session is not None:
        scope["session"] = session
    return Request(scope)


class TestGetSession:

    def test_no_session_middleware(self):
        assert get_session(_request()) is None

    def test_empty_session(self):
        assert get_session(_request({})) is None

    def test_signed_in(self):
        assert get_session(_request({"user_id": "abc"})) == Session(user_id="abc")


class TestGuards:

    @pytest.mark.asyncio
    async def test_require_auth_without_session(self, db):
        async with db.session_maker() as session:
            with pytest.raises(AuthenticationError):
                await require_auth(_request({}), session)

    @pytest.mark.asyncio
    async def test_require_auth_unknown_user(self, db):
        async with db.session_maker() as session:
            with pytest.raises(AuthenticationError):
                await require_auth(_request({"user_id": "missing"}), session)

    @pytest.mark.asyncio
    async def test_require_auth_returns_context(self, db):
        user = await db.seed_user("alice")
        async with db.session_maker() as session:
            ctx = await require_auth(_request({"user_id": user.id}), session)

        assert ctx.session.user_id == user.id
        assert ctx.user.username == "alice"

    @pytest.mark.asyncio
    async def test_banned_user_rejected(self, db):
        user = await db.seed_user("mallory", is_banned=True, ban_reason="spam")
        async with db.session_maker() as session:
            with pytest.raises(BannedUserError) as exc_info:
                await require_auth(_request({"user_id": user.id}), session)

        assert exc_info.value.status_code == 403
        assert exc_info.value.code == "USER_BANNED"

    @pytest.mark.asyncio
    async def test_require_admin_rejects_plain_user(self, db):
        user = await db.seed_user("bob", roles=["user"])
        async with db.session_maker() as session:
            with pytest.raises(InsufficientPermissionsError) as exc_info:
                await require_admin(_request({"user_id": user.id}), session)

        assert exc_info.value.message == "Admin role required"
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_require_admin_accepts_admin(self, db):
        user = await db.seed_user("root", roles=["user", "admin"])
        async with db.session_maker() as session:
            ctx = await require_admin(_request({"user_id": user.id}), session)

        assert ctx.user.id == user.id

    @pytest.mark.asyncio
    async def test_moderator_guard(self, db):
        moderator = await db.seed_user("mod", roles=["user", "moderator"])
        plain = await db.seed_user("pleb")
        async with db.session_maker() as session:
            ctx = await require_admin_or_moderator(_request({"user_id": moderator.id}), session)
            assert ctx.user.username == "mod"

            with pytest.raises(InsufficientPermissionsError) as exc_info:
                await require_admin_or_moderator(_request({"user_id": plain.id}), session)

        assert exc_info.value.message == "Moderator role required"

    @pytest.mark.asyncio
    async def test_ban_applies_to_live_session(self, db):
        user = await db.seed_user("carol")
        async with db.session_maker() as session:
            await require_auth(_request({"user_id": user.id}), session)

            async with db.session_maker() as admin_session:
                banned = await admin_session.get(type(user), user.id)
                banned.is_banned = True
                await admin_session.commit()

            with pytest.raises(BannedUserError):
                await require_auth(_request({"user_id": user.id}), session)


class TestDependencyAliases:

    @pytest.fixture
    def guarded_client(self, db):
        app = FastAPI()
        app.add_middleware(
            SessionMiddleware, secret_key=SESSION_SECRET, session_cookie="companion_session"
        )
        app.dependency_overrides[get_db] = db.override_get_db

        @app.get("/me")
        async def me(ctx: AuthDep):
            return {"username": ctx.user.username}

        @app.get("/admin")
        async def admin_only(ctx: AdminDep):
            return {"admin": ctx.user.username}

        @app.get("/mod")
        async def mod_only(ctx: ModeratorDep):
            return {"mod": ctx.user.username}

        register_exception_handlers(app)
        return TestClient(app, raise_server_exceptions=False)

    def test_dependencies_resolve_context(self, guarded_client, db):
        user = db.add_user("root", roles=["admin"])
        guarded_client.cookies.set("companion_session", make_session_cookie({"user_id": user.id}))

        assert guarded_client.get("/me").json() == {"username": "root"}
        assert guarded_client.get("/admin").json() == {"admin": "root"}
        assert guarded_client.get("/mod").json() == {"mod": "root"}

    def test_dependencies_raise_into_envelope(self, guarded_client, db):
        user = db.add_user("bob")
        guarded_client.cookies.set("companion_session", make_session_cookie({"user_id": user.id}))

        resp = guarded_client.get("/admin")

        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Admin role required"
        assert guarded_client.get("/me").status_code == 200

    def test_missing_session_is_401(self, guarded_client):
        resp = guarded_client.get("/mod")

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTHENTICATION_ERROR"
