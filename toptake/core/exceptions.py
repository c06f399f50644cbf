from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

if TYPE_CHECKING:
    from toptake.models.submission import Submission


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Engine errors


class InvalidContentError(AppError):
    def __init__(self, message: str = "Invalid content", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_CONTENT", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidAmountError(AppError):
    def __init__(self, message: str = "Amount must be positive", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_AMOUNT", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidDateKeyError(AppError):
    def __init__(self, message: str = "Invalid date key", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_DATE_KEY", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class AlreadySubmittedError(AppError):
    """An accepted submission already exists; callers treat this as success with existing state."""

    def __init__(self, existing: "Submission"):
        self.existing = existing
        super().__init__(
            "Already submitted for this prompt date",
            code="ALREADY_SUBMITTED",
            status_code=status.HTTP_409_CONFLICT,
            details={"submission_id": str(existing.id), "prompt_date": existing.prompt_date},
        )


class NoPromptForDateError(AppError):
    def __init__(self, prompt_date: str):
        super().__init__(
            f"No prompt for {prompt_date}",
            code="NO_PROMPT_FOR_DATE",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"prompt_date": prompt_date},
        )


class NotEligibleError(AppError):
    def __init__(self, message: str = "Not eligible", details: dict[str, Any] | None = None):
        super().__init__(message, code="NOT_ELIGIBLE", status_code=status.HTTP_403_FORBIDDEN, details=details)


class InsufficientCreditError(AppError):
    def __init__(self, credit_type: str, required: int, available: int):
        super().__init__(
            f"Insufficient {credit_type} credits",
            code="INSUFFICIENT_CREDIT",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"credit_type": credit_type, "required": required, "available": available},
        )


class StorageUnavailableError(AppError):
    """Transient; safe to retry with the same idempotency key."""

    def __init__(self, message: str = "Storage unavailable", details: dict[str, Any] | None = None):
        super().__init__(message, code="STORAGE_UNAVAILABLE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class ConcurrencyConflictError(AppError):
    """Another write won the race; re-read state before deciding."""

    def __init__(self, message: str = "Concurrent write conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONCURRENCY_CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into StorageUnavailableError. DuplicateKeyError passes through."""
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        raise StorageUnavailableError(
            f"Storage unavailable during {operation}",
            details={"operation": operation},
        ) from e


STORAGE_RETRY_AFTER_SECONDS = 1


def _render(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    details: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> ORJSONResponse:
    body: dict[str, Any] = {"error": {"message": message, "code": code, "details": details}}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return ORJSONResponse(status_code=status_code, content=body, headers=headers)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    headers = None
    if isinstance(exc, StorageUnavailableError):
        # retrying with the same idempotency key is safe
        headers = {"Retry-After": str(STORAGE_RETRY_AFTER_SECONDS)}
    return _render(request, exc.status_code, exc.message, exc.code, exc.details, headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    return _render(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": jsonable_encoder(exc.errors())},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from toptake.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", path=request.url.path, exc_info=exc)
    return _render(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL_ERROR", {})
