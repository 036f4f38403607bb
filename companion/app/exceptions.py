"""Application error taxonomy.

Every error the API raises on purpose is an ``AppError`` tagged with one
``ErrorKind``. The kind is a closed set: it fixes the HTTP status and the
machine-readable code, and the error classifier reads only the kind. The
subclasses below are convenience constructors for the common throw sites.
"""

import enum
from typing import Optional


class ErrorKind(enum.Enum):
    """Closed set of error kinds with their (status_code, code)."""

    VALIDATION = (400, "VALIDATION_ERROR")
    AUTHENTICATION = (401, "AUTHENTICATION_ERROR")
    AUTHORIZATION = (403, "AUTHORIZATION_ERROR")
    BANNED = (403, "USER_BANNED")
    INSUFFICIENT_PERMISSIONS = (403, "INSUFFICIENT_PERMISSIONS")
    NOT_FOUND = (404, "NOT_FOUND")
    CONFLICT = (409, "CONFLICT_ERROR")
    RATE_LIMIT = (429, "RATE_LIMIT_ERROR")
    INTERNAL = (500, "INTERNAL_ERROR")

    @property
    def status_code(self) -> int:
        return self.value[0]

    @property
    def code(self) -> str:
        return self.value[1]


class AppError(Exception):
    """Base class for application errors.

    Attributes:
        kind: The error kind (status code and code)
        message: Safe, user-facing message
        details: Extra detail, only surfaced for validation errors
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        kind: Optional[ErrorKind] = None,
        details: Optional[str] = None,
    ):
        if kind is not None:
            self.kind = kind
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def code(self) -> str:
        return self.kind.code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.name}, message={self.message!r})"


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = "Validation failed", details: Optional[str] = None):
        super().__init__(message, details=details)


class AuthenticationError(AppError):
    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationError(AppError):
    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class BannedUserError(AuthorizationError):
    kind = ErrorKind.BANNED

    def __init__(self, message: str = "Your account has been banned"):
        super().__init__(message)


class InsufficientPermissionsError(AuthorizationError):
    kind = ErrorKind.INSUFFICIENT_PERMISSIONS

    def __init__(self, required_role: Optional[str] = None):
        self.required_role = required_role
        super().__init__(
            f"{required_role} role required" if required_role else "Insufficient permissions"
        )


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str = "Resource"):
        self.resource = resource
        super().__init__(f"{resource} not found")


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message)


class RateLimitError(AppError):
    """Too many requests.

    The request guard answers 429 itself from the limiter's return value;
    this exists for code paths that have to abort from deeper inside a
    handler.
    """

    kind = ErrorKind.RATE_LIMIT

    def __init__(self, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__("Too many requests")


class InternalError(AppError):
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message)
