import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from smart_time_tracker.core.errors import (
    GenerationExhausted,
    NotFoundOrExpired,
    StorageError,
    Unauthorized,
    ValidationError,
)

logger = logging.getLogger(__name__)


def create_json_error_response(status_code: int, message: str, details: dict | None = None) -> JSONResponse:
    """Error body in the ``{"error": ...}`` shape tracker clients expect."""
    content: dict = {"error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def tracker_error_handler(_: Request, exc: Exception) -> Response:
    """Map the tracker error taxonomy onto HTTP status codes."""
    if isinstance(exc, Unauthorized):
        return create_json_error_response(401, str(exc))
    if isinstance(exc, (ValidationError, NotFoundOrExpired)):
        return create_json_error_response(400, str(exc))
    if isinstance(exc, StorageError):
        logger.error("Storage error: %s", exc)
        return create_json_error_response(500, str(exc), details=exc.details)
    if isinstance(exc, GenerationExhausted):
        logger.error("Pairing code generation exhausted")
        return create_json_error_response(500, str(exc))

    logger.exception("Unhandled tracker error: %s", exc)
    return create_json_error_response(500, "An unexpected error occurred.")


async def request_validation_handler(_: Request, exc: Exception) -> Response:
    """Malformed bodies are plain 400s, like any other bad input."""
    return create_json_error_response(400, "Invalid request body")


async def general_exception_handler(_: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("Unexpected error: %s", exc)
    return create_json_error_response(500, "An unexpected error occurred.")
