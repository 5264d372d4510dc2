"""
Centralized error definitions and user-facing message mapping.
Raw provider error text never reaches the response body; it is logged server-side
and, for pulls, kept in the sync log's error column.
"""
import logging

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TriageError(Exception):
    """Base class for engine errors with user message and status code."""
    status_code: int = 500
    user_message: str = "Something went wrong. Please try again."

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.user_message)


class IssueNotFoundError(TriageError):
    status_code = 404
    user_message = "Issue not found"


class RepositoryNotFoundError(TriageError):
    status_code = 404
    user_message = "Repository not found"


class RepositoryAlreadyConnectedError(TriageError):
    status_code = 409
    user_message = "Repository already connected"


class ProviderTokenMissingError(TriageError):
    status_code = 400

    def __init__(self, provider: str):
        self.provider = provider
        self.user_message = f"Please connect a {provider} account or add a personal token"
        super().__init__(f"No {provider} token found")


class ProviderWriteError(TriageError):
    status_code = 502
    user_message = "Failed to update issue"


class TokenValidationError(TriageError):
    status_code = 400
    user_message = "Token was rejected by the provider"


class InvalidTriagePayloadError(TriageError):
    status_code = 422
    user_message = "Nothing to update"


class UnknownUserError(TriageError):
    status_code = 401
    user_message = "Not authenticated"


ERROR_MAP = {
    "ProviderAuthError": (400, "Please reconnect your account"),
    "ProviderRateLimitError": (503, "The issue tracker is busy. Try again shortly."),
    "ProviderAPIError": (502, "The issue tracker could not be reached"),
    "TokenEncryptionError": (500, "Something went wrong. Please try again."),
}


def handle_triage_error(exc: Exception) -> HTTPException:
    """
    Converts engine and provider exceptions to HTTP errors with user-friendly messages.
    Logs detailed error info server-side.
    """
    error_name = type(exc).__name__

    if isinstance(exc, TriageError):
        logger.warning(
            f"Triage error: {error_name}, detail={exc.detail}, user_message={exc.user_message}"
        )
        return HTTPException(status_code=exc.status_code, detail=exc.user_message)

    if error_name in ERROR_MAP:
        status_code, user_message = ERROR_MAP[error_name]
        logger.warning(f"Mapped error: {error_name}, detail={exc}")
        return HTTPException(status_code=status_code, detail=user_message)

    logger.error(f"Unhandled triage error: {error_name}, detail={exc}")
    return HTTPException(
        status_code=500,
        detail="Something went wrong. Please try again.",
    )


async def triage_exception_handler(request: Request, exc: TriageError) -> JSONResponse:
    """FastAPI exception handler for TriageError subclasses."""
    logger.warning(
        f"Triage error handler: {type(exc).__name__}, "
        f"path={request.url.path}, user_message={exc.user_message}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.user_message},
    )


async def provider_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Maps provider exceptions that escape a route to a generic message."""
    http_exc = handle_triage_error(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


__all__ = [
    "TriageError",
    "IssueNotFoundError",
    "RepositoryNotFoundError",
    "RepositoryAlreadyConnectedError",
    "ProviderTokenMissingError",
    "ProviderWriteError",
    "TokenValidationError",
    "InvalidTriagePayloadError",
    "UnknownUserError",
    "handle_triage_error",
    "triage_exception_handler",
    "provider_exception_handler",
    "ERROR_MAP",
]
