"""Error taxonomy for the short-link engine.

Every error the engine raises towards the HTTP layer derives from ``AppError``
and carries a machine-readable ``code`` plus the HTTP ``status_code`` it maps
to. Adapters raise ``StoreError`` / ``CacheError`` so that the engine never
depends on SQLAlchemy or Redis exception types.

Error Mapping
=============
::
    AppError
    ├─ ValidationError      400  VALIDATION_ERROR
    ├─ NotFoundError        404  NOT_FOUND
    │   └─ ForbiddenError   404  NOT_FOUND   (exists, other owner)
    ├─ ExpiredError         410  URL_EXPIRED
    ├─ InactiveError        410  URL_INACTIVE
    ├─ AlreadyExistsError   409  ALREADY_EXISTS
    ├─ UnauthorizedError    401  UNAUTHORIZED   (no owner identity)
    └─ InternalError        500  INTERNAL_ERROR

    StoreError / DuplicateCodeError   (record store adapter)
    CacheError                        (cache adapter)
"""

from shortlinks.enums import ErrorCode

__all__ = [
    "AlreadyExistsError",
    "AppError",
    "CacheError",
    "DuplicateCodeError",
    "ExpiredError",
    "ForbiddenError",
    "InactiveError",
    "InternalError",
    "NotFoundError",
    "StoreError",
    "UnauthorizedError",
    "ValidationError",
]


class AppError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def public_code(self) -> ErrorCode:
        """Code shown to API callers; may hide the internal classification."""
        return self.code

    def to_response(self) -> dict:
        body = {"code": self.public_code.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(AppError):
    code = ErrorCode.VALIDATION
    status_code = 400


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class ForbiddenError(NotFoundError):
    """The link exists but belongs to another owner.

    Rendered exactly like ``NotFoundError`` so non-owners cannot discover
    which codes are taken.
    """

    code = ErrorCode.FORBIDDEN

    def __init__(self, message: str = "URL not found or access denied", details: str | None = None) -> None:
        super().__init__(message, details)

    @property
    def public_code(self) -> ErrorCode:
        return ErrorCode.NOT_FOUND


class ExpiredError(AppError):
    code = ErrorCode.EXPIRED
    status_code = 410


class InactiveError(AppError):
    code = ErrorCode.INACTIVE
    status_code = 410


class AlreadyExistsError(AppError):
    code = ErrorCode.ALREADY_EXISTS
    status_code = 409


class UnauthorizedError(AppError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class InternalError(AppError):
    code = ErrorCode.INTERNAL
    status_code = 500


class StoreError(Exception):
    """Raised by the record store for any underlying database failure."""


class DuplicateCodeError(StoreError):
    """Insert rejected by the unique index on the short code."""

    def __init__(self, code: str) -> None:
        super().__init__(f"short code {code!r} already exists")
        self.short_code = code


class CacheError(Exception):
    """Raised by the cache layer for any underlying Redis failure."""
