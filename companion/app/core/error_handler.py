"""Error classification into the uniform JSON error envelope.

Every API error leaves the service as::

    {"error": {"message", "code", "statusCode", "details"?}, "requestId"?}

Known errors keep their specific, safe message. Unknown errors are flattened
to a generic message; their text is only attached outside production, as is
the request id. Each classification is logged exactly once, here.
"""

import re
import uuid
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import DataError, IntegrityError, StatementError

from companion.app.core.config import Settings, settings
from companion.app.core.logging import get_logger
from companion.app.exceptions import AppError, ErrorKind
from companion.app.middleware.request_id import REQUEST_ID_HEADER, current_request_id

logger = get_logger(__name__)

GENERIC_MESSAGE = "An unexpected error occurred"

# sqlite: "UNIQUE constraint failed: users.username"
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: ([\w.]+)")
# postgres: "Key (username)=(bob) already exists."
_PG_UNIQUE = re.compile(r"Key \(([^)]+)\)=")
# mysql: "Duplicate entry 'bob' for key 'users.username'"
_MYSQL_UNIQUE = re.compile(r"Duplicate entry .* for key '([\w.]+)'")


def format_validation_errors(errors: Any) -> str:
    """Pretty field-level report, one block per failing field."""
    lines = []
    for err in errors:
        loc = ".".join(str(part) for part in err.get("loc", ()))
        lines.append(f"✖ {err.get('msg', 'Invalid value')}")
        if loc:
            lines.append(f"  → at {loc}")
    return "\n".join(lines)


def _duplicate_field(exc: IntegrityError) -> Optional[str]:
    """Name of the column behind a unique violation, or None if not one."""
    message = str(exc.orig)
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)

    for pattern in (_SQLITE_UNIQUE, _PG_UNIQUE, _MYSQL_UNIQUE):
        match = pattern.search(message)
        if match:
            return match.group(1).split(",")[0].strip().split(".")[-1]

    if sqlstate == "23505" or "duplicate key" in message.lower():
        return "Value"
    return None


def _envelope(
    kind: ErrorKind,
    message: str,
    request_id: str,
    details: Optional[str] = None,
    include_request_id: bool = True,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {
        "message": message,
        "code": kind.code,
        "statusCode": kind.status_code,
    }
    if details is not None:
        error["details"] = details
    body: Dict[str, Any] = {"error": error}
    if include_request_id:
        body["requestId"] = request_id
    return body


def app_settings(request: Request) -> Settings:
    """Settings of the app serving ``request``; module settings outside an app."""
    app = request.scope.get("app")
    return getattr(getattr(app, "state", None), "settings", None) or settings


def classify_error(
    exc: BaseException,
    app_config: Optional[Settings] = None,
    request_id: Optional[str] = None,
) -> Tuple[int, Dict[str, Any]]:
    """Map an exception to ``(status_code, envelope)`` and log it.

    Args:
        exc: The error to classify
        app_config: Settings deciding what is exposed; module settings if omitted
        request_id: Request id to report; the current request's if omitted
    """
    config = app_config or settings
    request_id = request_id or current_request_id() or str(uuid.uuid4())
    debug_details = None if config.is_production else str(exc)

    def envelope(kind: ErrorKind, message: str, details: Optional[str] = None) -> Dict[str, Any]:
        return _envelope(
            kind, message, request_id, details, include_request_id=not config.is_production
        )

    if isinstance(exc, AppError):
        kind = exc.kind
        details = exc.details if kind is ErrorKind.VALIDATION else None
        body = envelope(kind, exc.message, details)
    elif isinstance(exc, (PydanticValidationError, RequestValidationError)):
        kind = ErrorKind.VALIDATION
        body = envelope(kind, "Validation failed", format_validation_errors(exc.errors()))
    elif isinstance(exc, IntegrityError):
        field = _duplicate_field(exc)
        if field is not None:
            body = envelope(ErrorKind.CONFLICT, f"{field} already exists")
            body["error"]["code"] = "DUPLICATE_ERROR"
            kind = ErrorKind.CONFLICT
        else:
            kind = ErrorKind.VALIDATION
            body = envelope(kind, "Validation failed", debug_details)
    elif isinstance(exc, DataError) or (
        isinstance(exc, StatementError) and isinstance(exc.orig, (ValueError, TypeError))
    ):
        # Never echo the offending value back
        kind = ErrorKind.VALIDATION
        body = envelope(kind, "Invalid data format")
        body["error"]["code"] = "INVALID_FORMAT"
    else:
        kind = ErrorKind.INTERNAL
        body = envelope(kind, GENERIC_MESSAGE, debug_details)

    status_code = kind.status_code
    log_extra = {
        "request_id": request_id,
        "status_code": status_code,
        "error_code": body["error"]["code"],
        "exception_type": type(exc).__name__,
    }
    if status_code >= 500:
        logger.error(
            f"[{request_id}] Unhandled error: {exc!r}",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra=log_extra,
        )
    else:
        logger.warning(f"[{request_id}] {type(exc).__name__}: {exc}", extra=log_extra)

    return status_code, body


def handle_error(
    exc: BaseException,
    app_config: Optional[Settings] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """Classify ``exc`` and render it as a JSON response."""
    status_code, body = classify_error(exc, app_config, request_id)
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    """Route raised errors through the classifier so every route shares the envelope.

    The handler for bare ``Exception`` runs in Starlette's outermost
    middleware, after the request id context has been reset, so the id is
    read back from ``request.state`` and echoed in the response header.
    """

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        response = handle_error(exc, app_settings(request), request_id)
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.add_exception_handler(AppError, _handler)
    app.add_exception_handler(RequestValidationError, _handler)
    app.add_exception_handler(IntegrityError, _handler)
    app.add_exception_handler(Exception, _handler)
