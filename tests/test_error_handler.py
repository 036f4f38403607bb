"""Tests for error classification."""

import pytest
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import DataError, IntegrityError, StatementError

from companion.app.core import error_handler
from companion.app.core.config import Settings
from companion.app.core.error_handler import (
    GENERIC_MESSAGE,
    classify_error,
    format_validation_errors,
    handle_error,
)
from companion.app.exceptions import (
    AppError,
    AuthenticationError,
    BannedUserError,
    ConflictError,
    ErrorKind,
    InsufficientPermissionsError,
    InternalError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)


class _Orig(Exception):
    """Stand-in for a DBAPI exception."""

    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class _Payload(BaseModel):
    title: str = Field(min_length=1)
    count: int


@pytest.fixture
def production():
    return Settings(environment="production")


@pytest.fixture
def development():
    return Settings(environment="development")


class TestErrorKinds:

    @pytest.mark.parametrize(
        "exc, status, code, message",
        [
            (NotFoundError("Widget"), 404, "NOT_FOUND", "Widget not found"),
            (AuthenticationError(), 401, "AUTHENTICATION_ERROR", "Authentication required"),
            (BannedUserError(), 403, "USER_BANNED", "Your account has been banned"),
            (InsufficientPermissionsError("Admin"), 403, "INSUFFICIENT_PERMISSIONS", "Admin role required"),
            (ConflictError("Username already taken"), 409, "CONFLICT_ERROR", "Username already taken"),
            (RateLimitError(30), 429, "RATE_LIMIT_ERROR", "Too many requests"),
            (InternalError(), 500, "INTERNAL_ERROR", "An unexpected error occurred"),
        ],
    )
    def test_app_errors_keep_kind_and_message(self, development, exc, status, code, message):
        status_code, body = classify_error(exc, development)

        assert status_code == status
        assert body["error"]["code"] == code
        assert body["error"]["statusCode"] == status
        assert body["error"]["message"] == message

    def test_kind_passed_explicitly(self):
        exc = AppError("Gone fishing", kind=ErrorKind.NOT_FOUND)
        assert exc.status_code == 404
        assert exc.code == "NOT_FOUND"

    def test_validation_error_carries_details(self, development):
        exc = ValidationError("Bad input", details="title is required")
        _, body = classify_error(exc, development)
        assert body["error"]["details"] == "title is required"

    def test_other_app_errors_hide_details(self, development):
        exc = AppError("nope", kind=ErrorKind.AUTHORIZATION, details="secret")
        _, body = classify_error(exc, development)
        assert "details" not in body["error"]


class TestPydanticErrors:

    def test_pretty_report(self, development):
        with pytest.raises(PydanticValidationError) as exc_info:
            _Payload.model_validate({"title": "", "count": "x"})

        status_code, body = classify_error(exc_info.value, development)

        assert status_code == 400
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["message"] == "Validation failed"
        details = body["error"]["details"]
        assert "✖" in details
        assert "→ at title" in details
        assert "→ at count" in details

    def test_format_validation_errors_without_location(self):
        assert format_validation_errors([{"msg": "bad", "loc": ()}]) == "✖ bad"


class TestDatabaseErrors:

    def test_sqlite_unique_violation(self, development):
        exc = IntegrityError("INSERT", {}, _Orig("UNIQUE constraint failed: users.username"))

        status_code, body = classify_error(exc, development)

        assert status_code == 409
        assert body["error"]["code"] == "DUPLICATE_ERROR"
        assert body["error"]["message"] == "username already exists"

    def test_postgres_unique_violation(self, development):
        orig = _Orig('duplicate key value violates unique constraint "users_email_key"\n'
                     "DETAIL:  Key (email)=(a@b.c) already exists.", sqlstate="23505")
        status_code, body = classify_error(IntegrityError("INSERT", {}, orig), development)

        assert status_code == 409
        assert body["error"]["message"] == "email already exists"

    def test_other_integrity_error(self, development):
        exc = IntegrityError("INSERT", {}, _Orig("NOT NULL constraint failed: feedback.title"))

        status_code, body = classify_error(exc, development)

        assert status_code == 400
        assert body["error"]["code"] == "VALIDATION_ERROR"

    def test_data_error_hides_value(self, development):
        exc = DataError("INSERT", {}, _Orig("invalid input syntax for type integer: \"abc\""))

        status_code, body = classify_error(exc, development)

        assert status_code == 400
        assert body["error"]["code"] == "INVALID_FORMAT"
        assert body["error"]["message"] == "Invalid data format"
        assert "abc" not in str(body)

    def test_statement_error_wrapping_value_error(self, development):
        exc = StatementError("bad param", "SELECT", {}, ValueError("not a date"))

        status_code, body = classify_error(exc, development)

        assert status_code == 400
        assert body["error"]["code"] == "INVALID_FORMAT"


class TestUnknownErrors:

    def test_production_hides_everything(self, production):
        status_code, body = classify_error(Exception("boom"), production)

        assert status_code == 500
        assert body == {
            "error": {
                "message": GENERIC_MESSAGE,
                "code": "INTERNAL_ERROR",
                "statusCode": 500,
            }
        }

    def test_development_includes_details_and_request_id(self, development):
        status_code, body = classify_error(RuntimeError("boom"), development)

        assert status_code == 500
        assert body["error"]["message"] == GENERIC_MESSAGE
        assert body["error"]["details"] == "boom"
        assert body["requestId"]

    def test_uses_current_request_id(self, development, monkeypatch):
        monkeypatch.setattr(error_handler, "current_request_id", lambda: "req-123")

        _, body = classify_error(NotFoundError("Widget"), development)

        assert body["requestId"] == "req-123"

    def test_handle_error_renders_response(self, production):
        response = handle_error(NotFoundError("Feedback"), production)

        assert response.status_code == 404
        assert b'"Feedback not found"' in response.body
